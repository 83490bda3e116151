"""Request and response contracts for the HTTP API.

Field names follow the JSON wire format used by the frontend (camelCase).
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body returned for every failure."""

    error: str = Field(..., description="Human readable error")
    details: Optional[str] = Field(None, description="Diagnostic detail (non-production only)")


class RelayStakeResponse(BaseModel):
    """Result of a relayed stake."""

    success: bool = Field(..., description="Whether the transaction was accepted by the network")
    txHash: str = Field(..., description="Transaction hash")
    message: str = Field(default="Transaction relayed successfully")


class StakingInfoResponse(BaseModel):
    """Staking position, all values in token base units."""

    stakedBalance: str
    rewardDebt: str
    pendingRewards: str
    totalStaked: str


class SwapQuoteResponse(BaseModel):
    """Swap quote; ``degraded`` is true when served from the fallback rate."""

    amountIn: str
    amountOut: str
    path: list[str]
    exchange: str
    degraded: bool = False
    note: Optional[str] = None


class GasEstimateResponse(BaseModel):
    """Fee data in gwei."""

    gasPrice: Optional[str]
    maxFeePerGas: Optional[str]
    maxPriorityFeePerGas: Optional[str]


class ContractsResponse(BaseModel):
    """Configured contract addresses."""

    staking: Optional[str]
    swapRouter: Optional[str]
    ylsToken: Optional[str]
    tradingStrategies: Optional[str]
