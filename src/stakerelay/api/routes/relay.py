"""Gasless stake relay endpoint."""

import json

from fastapi import APIRouter, Depends, Request

from stakerelay.api.dependencies import get_pipeline
from stakerelay.api.schemas import ErrorResponse, RelayStakeResponse
from stakerelay.errors import ValidationError
from stakerelay.relay.pipeline import RelayPipeline

router = APIRouter()


@router.post(
    "/relay/stake",
    response_model=RelayStakeResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def relay_stake(request: Request, pipeline: RelayPipeline = Depends(get_pipeline)):
    """Relay a signed stake authorization on behalf of the user.

    Body fields: ``user``, ``pid``, ``amount``, ``deadline``, ``signature``.
    Numeric fields may be JSON numbers or decimal strings.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")

    outcome = await pipeline.relay(payload)
    return RelayStakeResponse(success=True, txHash=outcome.tx_hash)
