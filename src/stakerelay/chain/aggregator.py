"""Read-only chain data: staking balances, swap quotes and gas prices.

Swap quotes follow a primary/fallback policy: the router contract is the
authoritative source; when it reverts or is unreachable the quote is served
from the configured rate table and flagged ``degraded``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from typing import Callable, Optional

from web3 import Web3

from stakerelay.chain.client import ROUTER_GET_AMOUNTS_OUT, STAKING_VIEWS, ChainClient
from stakerelay.errors import UpstreamError, ValidationError
from stakerelay.relay.validation import UINT256_MAX, parse_address

logger = logging.getLogger(__name__)

PRIMARY_EXCHANGE = "Uniswap V2"
FALLBACK_EXCHANGE = "Mock Exchange"
FALLBACK_NOTE = "Using mock data - contract call failed"
FALLBACK_PRECISION = Decimal("0.000001")

# Working precision for amount arithmetic; uint256 has 78 digits
DECIMAL_DIGITS = 100


@dataclass
class StakingInfo:
    """Staking position of one address in one pool."""
    staked_balance: int
    reward_debt: int
    pending_rewards: int
    total_staked: int

    def to_dict(self) -> dict:
        return {
            "stakedBalance": str(self.staked_balance),
            "rewardDebt": str(self.reward_debt),
            "pendingRewards": str(self.pending_rewards),
            "totalStaked": str(self.total_staked),
        }


@dataclass
class ChainQuote:
    """Swap quote from the router or from the fallback rate table."""
    source: str                  # "router" or "fallback"
    exchange: str
    token_in: str
    token_out: str
    amount_in: str
    amount_out: str
    path: list[str]
    degraded: bool = False
    note: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        data = {
            "amountIn": self.amount_in,
            "amountOut": self.amount_out,
            "path": self.path,
            "exchange": self.exchange,
            "degraded": self.degraded,
        }
        if self.note:
            data["note"] = self.note
        return data


@dataclass
class GasEstimate:
    """Fee data sampled from the node, all values in wei."""
    gas_price: int
    base_fee: Optional[int]
    priority_fee: Optional[int]
    sampled_at: float

    @property
    def max_fee_per_gas(self) -> Optional[int]:
        # Same headroom rule as ethers' getFeeData: two blocks of base fee growth
        if self.base_fee is None or self.priority_fee is None:
            return None
        return 2 * self.base_fee + self.priority_fee

    def to_dict(self) -> dict:
        def gwei(value: Optional[int]) -> Optional[str]:
            if value is None:
                return None
            return format_units(value, "gwei")

        return {
            "gasPrice": gwei(self.gas_price),
            "maxFeePerGas": gwei(self.max_fee_per_gas),
            "maxPriorityFeePerGas": gwei(self.priority_fee),
        }


def format_units(value: int, unit: str = "ether") -> str:
    """Format a base-unit integer like ethers' formatUnits ("1.0", "0.5")."""
    amount = Web3.from_wei(value, unit)
    text = format(amount, "f")
    if "." not in text:
        return text + ".0"
    text = text.rstrip("0")
    return text + "0" if text.endswith(".") else text


def parse_ether(value: str) -> int:
    """Parse a decimal string in ether units into wei."""
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValidationError("amountIn must be a decimal number", field="amountIn")
    if not amount.is_finite() or amount < 0:
        raise ValidationError("amountIn must be a non-negative number", field="amountIn")
    with localcontext() as ctx:
        ctx.prec = DECIMAL_DIGITS
        ctx.traps[Inexact] = True
        try:
            wei = amount.scaleb(18)
        except Inexact:
            raise ValidationError("amountIn has too many digits", field="amountIn")
        if wei != wei.to_integral_value():
            raise ValidationError("amountIn has more than 18 decimals", field="amountIn")
        if wei > UINT256_MAX:
            raise ValidationError("amountIn exceeds uint256", field="amountIn")
        return int(wei)


class ChainDataAggregator:
    """Aggregates read-only chain state for the API."""

    def __init__(
        self,
        client: ChainClient,
        staking_address: str,
        router_address: str,
        intermediate_address: str,
        fallback_rate: Decimal = Decimal("0.001"),
        rate_table: Optional[dict[tuple[str, str], Decimal]] = None,
        gas_cache_ttl: float = 15.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.client = client
        self.staking_address = staking_address
        self.router_address = router_address
        self.intermediate_address = intermediate_address
        self.fallback_rate = fallback_rate
        self.rate_table = rate_table or {}
        self.gas_cache_ttl = gas_cache_ttl
        self._clock = clock or time.time
        self._gas_cache: Optional[GasEstimate] = None
        self._gas_lock = asyncio.Lock()

    # Staking

    async def get_staking_info(self, address: str, pid: int = 0) -> StakingInfo:
        """Fetch a staking position with concurrent view calls.

        Raises:
            ValidationError: If ``address`` is malformed
            UpstreamError: If any of the calls fails
        """
        address = parse_address(address, "address")

        user_sig, user_out = STAKING_VIEWS["userInfo"]
        pending_sig, pending_out = STAKING_VIEWS["pendingRewards"]
        total_sig, total_out = STAKING_VIEWS["totalStaked"]

        try:
            user_info, pending, total = await asyncio.gather(
                self.client.call_function(self.staking_address, user_sig, [pid, address], user_out),
                self.client.call_function(self.staking_address, pending_sig, [pid, address], pending_out),
                self.client.call_function(self.staking_address, total_sig, [], total_out),
            )
        except Exception as e:
            logger.error(f"Error fetching staking info for {address}: {e}")
            raise UpstreamError(
                "Failed to fetch staking information", details=str(e), status_code=500
            )

        return StakingInfo(
            staked_balance=user_info[0],
            reward_debt=user_info[1],
            pending_rewards=pending[0],
            total_staked=total[0],
        )

    # Swap quotes

    async def get_swap_quote(self, amount_in: str, token_in: str, token_out: str) -> ChainQuote:
        """Quote ``amount_in`` of ``token_in`` in ``token_out``.

        Router failures never propagate; they produce a degraded quote.
        """
        if not amount_in or not token_in or not token_out:
            raise ValidationError("Missing required parameters: amountIn, tokenIn, tokenOut")

        amount_wei = parse_ether(amount_in)
        path = [token_in, self.intermediate_address, token_out]

        try:
            signature, output_types = ROUTER_GET_AMOUNTS_OUT
            (amounts,) = await self.client.call_function(
                self.router_address,
                signature,
                [amount_wei, [Web3.to_checksum_address(a) for a in path]],
                output_types,
            )
            return ChainQuote(
                source="router",
                exchange=PRIMARY_EXCHANGE,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                amount_out=format_units(amounts[-1]),
                path=path,
                degraded=False,
                timestamp=self._clock(),
            )
        except Exception as e:
            logger.warning(f"Contract call failed, using mock data: {e}")

        return self._fallback_quote(amount_in, token_in, token_out)

    def fallback_rate_for(self, token_in: str, token_out: str) -> Decimal:
        return self.rate_table.get((token_in.lower(), token_out.lower()), self.fallback_rate)

    def _fallback_quote(self, amount_in: str, token_in: str, token_out: str) -> ChainQuote:
        rate = self.fallback_rate_for(token_in, token_out)
        with localcontext() as ctx:
            ctx.prec = DECIMAL_DIGITS
            amount_out = (Decimal(amount_in) * rate).quantize(FALLBACK_PRECISION)
        return ChainQuote(
            source="fallback",
            exchange=FALLBACK_EXCHANGE,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=format(amount_out, "f"),
            path=[token_in, token_out],
            degraded=True,
            note=FALLBACK_NOTE,
            timestamp=self._clock(),
        )

    # Gas

    async def get_gas_estimate(self, force_refresh: bool = False) -> GasEstimate:
        """Current fee data, served from a short TTL cache.

        Raises:
            UpstreamError: If the node cannot be read on a cache miss
        """
        cached = self._gas_cache
        if not force_refresh and self._is_fresh(cached):
            return cached

        async with self._gas_lock:
            # Another caller may have refreshed while we waited
            cached = self._gas_cache
            if not force_refresh and self._is_fresh(cached):
                return cached

            try:
                gas_price, base_fee = await asyncio.gather(
                    self.client.get_gas_price(),
                    self.client.get_base_fee(),
                )
                priority_fee = None
                if base_fee is not None:
                    priority_fee = await self.client.get_max_priority_fee()
            except Exception as e:
                logger.error(f"Error estimating gas: {e}")
                raise UpstreamError("Failed to estimate gas prices", details=str(e), status_code=500)

            estimate = GasEstimate(
                gas_price=gas_price,
                base_fee=base_fee,
                priority_fee=priority_fee,
                sampled_at=self._clock(),
            )
            self._gas_cache = estimate
            return estimate

    def _is_fresh(self, estimate: Optional[GasEstimate]) -> bool:
        return estimate is not None and self._clock() - estimate.sampled_at < self.gas_cache_ttl

    async def refresh_gas_periodically(self, interval: float) -> None:
        """Background loop keeping the gas cache warm."""
        while True:
            try:
                await self.get_gas_estimate(force_refresh=True)
            except UpstreamError as e:
                logger.warning(f"Background gas refresh failed: {e.details}")
            await asyncio.sleep(interval)
