"""Relayer transaction submission.

All submissions for the relayer account go through one lock, so nonce
assignment is never ambiguous. Broadcast failures are classified and retried:

- transient (timeouts, transport, node overload): bounded exponential
  backoff, same nonce
- nonce too low: re-sync the nonce from the node, retry once
- already known: re-sync the nonce; if the node has moved past ours it holds
  this exact transaction and the hash is returned, otherwise retry once
- underpriced: refresh the gas estimate, bump fees, retry once
- anything else: fatal

Fatal failures surface as UpstreamError. Consumed replay digests are not
released by a failure here.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from web3 import Web3

from stakerelay.chain.aggregator import ChainDataAggregator, GasEstimate
from stakerelay.chain.client import ChainClient, RPCError, RPCResponseError, RPCTransportError, encode_call
from stakerelay.errors import InternalError, UpstreamError
from stakerelay.relay.validation import RelayRequest
from stakerelay.signing.base import SignerBackend, SigningError
from stakerelay.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

NONCE_MARKERS = ("nonce too low", "nonce has already been used", "invalid nonce")
ALREADY_KNOWN_MARKERS = ("already known", "known transaction", "already imported")
UNDERPRICED_MARKERS = (
    "underpriced",
    "fee too low",
    "max fee per gas less than block base fee",
    "feecap",
)
TRANSIENT_MARKERS = ("timeout", "timed out", "rate limit", "too many requests", "header not found", "busy")

# JSON-RPC server-side error codes that indicate node trouble rather than a bad tx
TRANSIENT_RPC_CODES = (-32603, -32005)


class FailureKind(str, Enum):
    """Classification of a broadcast failure."""

    TRANSIENT = "transient"
    NONCE = "nonce"
    ALREADY_KNOWN = "already_known"
    UNDERPRICED = "underpriced"
    FATAL = "fatal"


def classify_error(error: Exception) -> FailureKind:
    """Map a node error onto the retry policy."""
    if isinstance(error, RPCTransportError):
        return FailureKind.TRANSIENT
    if not isinstance(error, RPCResponseError):
        return FailureKind.FATAL

    message = (error.message or "").lower()
    if any(marker in message for marker in ALREADY_KNOWN_MARKERS):
        return FailureKind.ALREADY_KNOWN
    if any(marker in message for marker in NONCE_MARKERS):
        return FailureKind.NONCE
    if any(marker in message for marker in UNDERPRICED_MARKERS):
        return FailureKind.UNDERPRICED
    if any(marker in message for marker in TRANSIENT_MARKERS) or error.code in TRANSIENT_RPC_CODES:
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


@dataclass
class RelayerAccount:
    """Process-lifetime state of the relayer account.

    ``nonce`` is the next nonce to use; None means it must be re-synced from
    the node before the next submission.
    """
    address: str
    nonce: Optional[int] = None
    balance: Optional[int] = None
    synced_at: Optional[float] = None
    submitted: int = 0

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "nonce": self.nonce,
            "balance": str(self.balance) if self.balance is not None else None,
            "syncedAt": self.synced_at,
            "submitted": self.submitted,
        }


class RelayerSubmitter:
    """Signs and broadcasts relayed stake transactions."""

    def __init__(
        self,
        client: ChainClient,
        signer: SignerBackend,
        aggregator: ChainDataAggregator,
        staking_address: str,
        chain_id: int,
        stake_function_signature: str = "stakeWithSignature(address,uint256,uint256,uint256,bytes)",
        gas_limit: int = 300000,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        min_balance_wei: int = 0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.client = client
        self.signer = signer
        self.aggregator = aggregator
        self.staking_address = Web3.to_checksum_address(staking_address) if staking_address else ""
        self.chain_id = chain_id
        self.stake_function_signature = stake_function_signature
        self.gas_limit = gas_limit
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.min_balance_wei = min_balance_wei
        self.account = RelayerAccount(address=signer.address)
        self._sleep = sleep or asyncio.sleep
        self._locks = KeyedLock("relayer", timeout=None)

    def build_calldata(self, request: RelayRequest) -> str:
        """Encode the relayed stake call for the staking contract."""
        return encode_call(
            self.stake_function_signature,
            [request.user, request.pid, request.amount, request.deadline, request.signature],
        )

    async def sync(self) -> RelayerAccount:
        """Reload nonce and balance from the node.

        Raises:
            UpstreamError: If the node cannot be read
        """
        async with self._locks.hold(self.account.address, operation="sync"):
            await self._sync_locked()
        return self.account

    async def submit(self, request: RelayRequest) -> str:
        """Submit a relayed stake and return its transaction hash.

        Returns as soon as the node accepts the transaction.

        Raises:
            UpstreamError: If the transaction could not be broadcast
        """
        data = self.build_calldata(request)
        async with self._locks.hold(self.account.address, operation="submit"):
            return await self._submit_locked(data, request)

    async def _sync_locked(self) -> None:
        address = self.account.address
        try:
            nonce, balance = await asyncio.gather(
                self.client.get_transaction_count(address, "pending"),
                self.client.get_balance(address),
            )
        except RPCError as e:
            logger.error(f"Failed to sync relayer account {address}: {e}")
            raise UpstreamError("Failed to relay transaction", details=f"nonce sync failed: {e}")

        self.account.nonce = nonce
        self.account.balance = balance
        self.account.synced_at = time.time()
        logger.info(f"Relayer {address} synced: nonce={nonce} balance={balance}")

        if balance < self.min_balance_wei:
            logger.warning(
                f"Relayer {address} balance {balance} wei is below {self.min_balance_wei} wei"
            )

    async def _fee_fields(self, force_refresh: bool = False) -> dict:
        try:
            estimate = await self.aggregator.get_gas_estimate(force_refresh=force_refresh)
        except UpstreamError as e:
            raise UpstreamError("Failed to relay transaction", details=e.details)
        return self._fees_from_estimate(estimate)

    @staticmethod
    def _fees_from_estimate(estimate: GasEstimate) -> dict:
        if estimate.max_fee_per_gas is not None:
            return {
                "maxFeePerGas": estimate.max_fee_per_gas,
                "maxPriorityFeePerGas": estimate.priority_fee,
            }
        return {"gasPrice": estimate.gas_price}

    async def _bumped_fee_fields(self, previous: dict) -> dict:
        """Fresh fees, at least 12.5% above the previous attempt."""
        fresh = await self._fee_fields(force_refresh=True)
        bumped = {}
        for key, value in fresh.items():
            floor = (previous.get(key, 0) * 9 + 7) // 8
            bumped[key] = max(value, floor)
        return bumped

    def _build_tx(self, data: str, nonce: int, fees: dict) -> dict:
        tx = {
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": self.staking_address,
            "value": 0,
            "data": data,
            "gas": self.gas_limit,
            **fees,
        }
        if "maxFeePerGas" in fees:
            tx["type"] = 2
        return tx

    async def _submit_locked(self, data: str, request: RelayRequest) -> str:
        if self.account.nonce is None:
            await self._sync_locked()

        fees = await self._fee_fields()
        transient_failures = 0
        nonce_retried = False
        fee_retried = False

        while True:
            tx = self._build_tx(data, self.account.nonce, fees)
            try:
                signed = await self.signer.sign_transaction(tx)
            except SigningError as e:
                logger.error(f"Relayer signing failed: {e}")
                raise InternalError("Failed to relay transaction", details=str(e))

            try:
                tx_hash = await self.client.send_raw_transaction(signed.raw_transaction)
            except RPCError as e:
                kind = classify_error(e)
                logger.warning(
                    f"Broadcast failed for {request.user} (nonce {tx['nonce']}, {kind.value}): {e}"
                )

                if kind == FailureKind.TRANSIENT:
                    transient_failures += 1
                    if transient_failures >= self.max_attempts:
                        # The node may or may not have seen it; re-sync before the next submission
                        self.account.nonce = None
                        raise UpstreamError(
                            "Failed to relay transaction",
                            details=f"gave up after {transient_failures} attempts: {e}",
                        )
                    await self._sleep(self.backoff_base * (2 ** (transient_failures - 1)))
                    continue

                elif kind in (FailureKind.NONCE, FailureKind.ALREADY_KNOWN):
                    if nonce_retried:
                        self.account.nonce = None
                        raise UpstreamError("Failed to relay transaction", details=f"nonce error: {e}")
                    nonce_retried = True
                    await self._sync_locked()
                    if kind == FailureKind.ALREADY_KNOWN and self.account.nonce > tx["nonce"]:
                        self.account.submitted += 1
                        logger.info(
                            f"Node already holds tx {signed.tx_hash} for {request.user} (nonce {tx['nonce']})"
                        )
                        return signed.tx_hash
                    continue

                elif kind == FailureKind.UNDERPRICED:
                    if fee_retried:
                        raise UpstreamError("Failed to relay transaction", details=f"fee error: {e}")
                    fee_retried = True
                    fees = await self._bumped_fee_fields(fees)
                    continue

                else:
                    raise UpstreamError("Failed to relay transaction", details=str(e))

            self.account.nonce += 1
            self.account.submitted += 1
            tx_hash = tx_hash or signed.tx_hash
            logger.info(
                f"Relayed stake for {request.user}: pid={request.pid} "
                f"amount={Web3.from_wei(request.amount, 'ether')} nonce={tx['nonce']} tx={tx_hash}"
            )
            return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0, poll_interval: float = 2.0) -> dict:
        """Wait until ``tx_hash`` is mined.

        Confirmation tracking is optional and not part of ``submit``.

        Raises:
            UpstreamError: If the transaction reverted or was not mined in time
        """
        loop = asyncio.get_running_loop()
        started = loop.time()

        while True:
            try:
                receipt = await self.client.get_transaction_receipt(tx_hash)
            except RPCTransportError as e:
                logger.debug(f"Receipt poll for {tx_hash} failed: {e}")
                receipt = None

            if receipt is not None:
                if int(receipt.get("status", "0x1"), 16) == 0:
                    raise UpstreamError("Transaction reverted", details=tx_hash)
                return receipt

            if loop.time() - started > timeout:
                raise UpstreamError("Transaction not confirmed", details=f"{tx_hash} after {timeout}s")
            await self._sleep(poll_interval)
