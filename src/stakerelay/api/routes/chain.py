"""Read-only chain data endpoints."""

from typing import Optional

from eth_utils import is_hex_address
from fastapi import APIRouter, Depends, Query

from stakerelay.api.dependencies import get_aggregator, get_settings_dep
from stakerelay.api.schemas import (
    ContractsResponse,
    ErrorResponse,
    GasEstimateResponse,
    StakingInfoResponse,
    SwapQuoteResponse,
)
from stakerelay.chain.aggregator import ChainDataAggregator
from stakerelay.config import Settings
from stakerelay.errors import ValidationError

router = APIRouter()


@router.get(
    "/staking/{address}",
    response_model=StakingInfoResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def get_staking_info(
    address: str,
    pid: int = Query(default=0, ge=0, le=2**256 - 1, description="Staking pool id"),
    aggregator: ChainDataAggregator = Depends(get_aggregator),
):
    """Staking position of ``address`` in pool ``pid``."""
    if not is_hex_address(address):
        raise ValidationError("Invalid Ethereum address", field="address")

    info = await aggregator.get_staking_info(address, pid=pid)
    return info.to_dict()


@router.get(
    "/swap/quote",
    response_model=SwapQuoteResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
async def get_swap_quote(
    amountIn: Optional[str] = Query(default=None),
    tokenIn: Optional[str] = Query(default=None),
    tokenOut: Optional[str] = Query(default=None),
    aggregator: ChainDataAggregator = Depends(get_aggregator),
):
    """Quote a swap; falls back to a fixed rate when the router call fails."""
    quote = await aggregator.get_swap_quote(amountIn, tokenIn, tokenOut)
    return quote.to_dict()


@router.get("/contracts", response_model=ContractsResponse)
async def get_contracts(settings: Settings = Depends(get_settings_dep)):
    """Configured contract addresses."""
    return settings.get_contract_addresses()


@router.get(
    "/gas/estimate",
    response_model=GasEstimateResponse,
    responses={500: {"model": ErrorResponse}},
)
async def get_gas_estimate(aggregator: ChainDataAggregator = Depends(get_aggregator)):
    """Current gas prices in gwei."""
    estimate = await aggregator.get_gas_estimate()
    return estimate.to_dict()
