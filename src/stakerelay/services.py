"""Service wiring.

Builds every component once from a Settings object and hands them out by
reference. The API stores one RelayServices on ``app.state``.
"""

import asyncio
import logging
from typing import Callable, Optional

import httpx

from stakerelay.chain.aggregator import ChainDataAggregator
from stakerelay.chain.client import ChainClient
from stakerelay.config import Settings
from stakerelay.ledger.database import Database
from stakerelay.relay.auth import SignatureAuthenticator
from stakerelay.relay.pipeline import RelayPipeline
from stakerelay.relay.replay import MemoryReplayStore, ReplayGuard, ReplayStore, SQLReplayStore
from stakerelay.relay.submitter import RelayerSubmitter
from stakerelay.signing.base import SignerBackend, SigningError
from stakerelay.signing.factory import create_signer

logger = logging.getLogger(__name__)


class RelayServices:
    """Container for the process-wide components."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        signer: Optional[SignerBackend] = None,
        replay_store: Optional[ReplayStore] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings
        self.database: Optional[Database] = None
        self._gas_task: Optional[asyncio.Task] = None

        self.client = ChainClient(
            settings.op_mainnet_rpc,
            timeout=settings.rpc_timeout_seconds,
            transport=transport,
        )
        self.aggregator = ChainDataAggregator(
            self.client,
            staking_address=settings.staking_contract_address,
            router_address=settings.swap_router_address,
            intermediate_address=settings.weth_address,
            fallback_rate=settings.fallback_swap_rate,
            rate_table=settings.rate_table,
            gas_cache_ttl=settings.gas_cache_ttl_seconds,
            clock=clock,
        )

        if replay_store is None:
            replay_store = self._build_replay_store()
        self.replay_guard = ReplayGuard(
            replay_store,
            retention_seconds=settings.replay_retention_seconds,
            deadline_margin_seconds=settings.replay_deadline_margin_seconds,
            prune_interval_seconds=settings.replay_prune_interval_seconds,
            clock=clock,
        )
        self.authenticator = SignatureAuthenticator(clock=clock)

        self.signer = signer
        if self.signer is None:
            try:
                self.signer = create_signer(settings)
            except SigningError as e:
                logger.warning(f"Relayer signer unavailable, relay endpoint disabled: {e}")

        self.submitter: Optional[RelayerSubmitter] = None
        self.pipeline: Optional[RelayPipeline] = None
        if self.signer is not None:
            self.submitter = RelayerSubmitter(
                self.client,
                self.signer,
                self.aggregator,
                staking_address=settings.staking_contract_address,
                chain_id=settings.chain_id,
                stake_function_signature=settings.stake_function_signature,
                gas_limit=settings.relay_gas_limit,
                max_attempts=settings.relay_max_attempts,
                backoff_base=settings.relay_backoff_base_seconds,
                min_balance_wei=settings.relayer_min_balance_wei,
            )
            self.pipeline = RelayPipeline(self.authenticator, self.replay_guard, self.submitter)

    def _build_replay_store(self) -> ReplayStore:
        backend = self.settings.replay_backend.lower()
        if backend == "memory":
            if self.settings.is_production:
                logger.warning("In-memory replay store in production: replay protection is lost on restart")
            return MemoryReplayStore()
        if backend != "sql":
            raise ValueError(f"Unknown replay backend: {backend}")
        self.database = Database(self.settings.database_url, echo=self.settings.debug and not self.settings.is_production)
        return SQLReplayStore(self.database)

    async def start(self) -> None:
        """Create tables and start the optional gas refresh loop."""
        if self.database is not None:
            await self.database.init()
            logger.info("Replay database initialized")

        interval = self.settings.gas_refresh_interval_seconds
        if interval > 0:
            self._gas_task = asyncio.create_task(self.aggregator.refresh_gas_periodically(interval))
            logger.info(f"Gas refresh every {interval}s")

    async def close(self) -> None:
        """Stop background work and release connections."""
        if self._gas_task is not None:
            self._gas_task.cancel()
            try:
                await self._gas_task
            except asyncio.CancelledError:
                pass
            self._gas_task = None

        await self.client.close()
        if self.database is not None:
            await self.database.close()
