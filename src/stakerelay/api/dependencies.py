"""FastAPI dependencies resolving components from the application state."""

from fastapi import Request

from stakerelay.chain.aggregator import ChainDataAggregator
from stakerelay.config import Settings
from stakerelay.errors import InternalError
from stakerelay.relay.pipeline import RelayPipeline
from stakerelay.services import RelayServices


def get_services(request: Request) -> RelayServices:
    return request.app.state.services


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.services.settings


def get_aggregator(request: Request) -> ChainDataAggregator:
    return request.app.state.services.aggregator


def get_pipeline(request: Request) -> RelayPipeline:
    pipeline = request.app.state.services.pipeline
    if pipeline is None:
        raise InternalError("Relayer is not configured")
    return pipeline
