"""Replay protection for consumed authorizations.

A digest can be consumed exactly once. Consumption is never undone: if the
chain write fails afterwards, the record is marked failed and kept.

Retention policy: a record may be pruned only when it is older than
``retention_seconds`` AND its deadline is more than ``deadline_margin_seconds``
in the past. Requests past their deadline are rejected before reaching the
guard, so a pruned digest can never be consumed again.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from stakerelay.errors import ReplayError
from stakerelay.ledger.database import Database
from stakerelay.ledger.models import BIGINT_MAX, ReplayRecord, ReplayStatus
from stakerelay.ledger.repository import ReplayRepository
from stakerelay.relay.auth import digest_hex
from stakerelay.relay.validation import RelayRequest
from stakerelay.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumedAuthorization:
    """Store-agnostic view of a replay record."""
    digest: str
    user: str
    pid: int
    amount: int
    deadline: int
    consumed_at: datetime
    status: ReplayStatus = ReplayStatus.CONSUMED
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None


class ReplayStore(ABC):
    """Storage backend for consumed digests."""

    @abstractmethod
    async def try_consume(self, entry: ConsumedAuthorization) -> bool:
        """Insert ``entry`` only if its digest is absent.

        Returns:
            True if this call recorded the digest, False if it already existed
        """
        pass

    @abstractmethod
    async def get(self, digest: str) -> Optional[ConsumedAuthorization]:
        pass

    @abstractmethod
    async def record_result(
        self, digest: str, tx_hash: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        """Attach the submission outcome to a consumed digest."""
        pass

    @abstractmethod
    async def prune(self, consumed_before: datetime, deadline_before: int) -> int:
        """Delete records past retention. Returns number of deleted records."""
        pass

    @property
    def durable(self) -> bool:
        return True


class SQLReplayStore(ReplayStore):
    """Durable store backed by the ``replay_records`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def try_consume(self, entry: ConsumedAuthorization) -> bool:
        record = ReplayRecord(
            digest=entry.digest,
            user=entry.user,
            pid=str(entry.pid),
            amount=str(entry.amount),
            deadline=str(entry.deadline),
            expires_at=min(entry.deadline, BIGINT_MAX),
            consumed_at=entry.consumed_at,
            status=entry.status.value,
        )
        try:
            async with self.database.session() as session:
                await ReplayRepository(session).insert(record)
        except IntegrityError:
            return False
        return True

    async def get(self, digest: str) -> Optional[ConsumedAuthorization]:
        async with self.database.session() as session:
            record = await ReplayRepository(session).get(digest)
            if record is None:
                return None
            return ConsumedAuthorization(
                digest=record.digest,
                user=record.user,
                pid=int(record.pid),
                amount=int(record.amount),
                deadline=int(record.deadline),
                consumed_at=record.consumed_at,
                status=ReplayStatus(record.status),
                tx_hash=record.tx_hash,
                error_message=record.error_message,
            )

    async def record_result(
        self, digest: str, tx_hash: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        async with self.database.session() as session:
            repo = ReplayRepository(session)
            if tx_hash:
                await repo.mark_submitted(digest, tx_hash)
            else:
                await repo.mark_failed(digest, error or "unknown error")

    async def prune(self, consumed_before: datetime, deadline_before: int) -> int:
        async with self.database.session() as session:
            return await ReplayRepository(session).delete_expired(consumed_before, deadline_before)


class MemoryReplayStore(ReplayStore):
    """Process-local store. Replay protection is lost on restart."""

    def __init__(self):
        self._records: dict[str, ConsumedAuthorization] = {}
        self._lock = asyncio.Lock()

    @property
    def durable(self) -> bool:
        return False

    async def try_consume(self, entry: ConsumedAuthorization) -> bool:
        async with self._lock:
            if entry.digest in self._records:
                return False
            self._records[entry.digest] = entry
            return True

    async def get(self, digest: str) -> Optional[ConsumedAuthorization]:
        return self._records.get(digest)

    async def record_result(
        self, digest: str, tx_hash: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        async with self._lock:
            entry = self._records.get(digest)
            if entry is None:
                return
            if tx_hash:
                entry = replace(entry, status=ReplayStatus.SUBMITTED, tx_hash=tx_hash, error_message=None)
            else:
                entry = replace(entry, status=ReplayStatus.FAILED, error_message=error)
            self._records[digest] = entry

    async def prune(self, consumed_before: datetime, deadline_before: int) -> int:
        async with self._lock:
            expired = [
                digest for digest, entry in self._records.items()
                if entry.consumed_at < consumed_before and entry.deadline < deadline_before
            ]
            for digest in expired:
                del self._records[digest]
            return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class ReplayGuard:
    """Atomic check-and-record of consumed authorization digests."""

    def __init__(
        self,
        store: ReplayStore,
        retention_seconds: int = 86400,
        deadline_margin_seconds: int = 3600,
        prune_interval_seconds: int = 600,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.retention_seconds = retention_seconds
        self.deadline_margin_seconds = deadline_margin_seconds
        self.prune_interval_seconds = prune_interval_seconds
        self._clock = clock or time.time
        self._locks = KeyedLock("replay")
        self._last_prune = self._clock()

    async def try_consume(self, request: RelayRequest, digest: bytes) -> ConsumedAuthorization:
        """Consume ``digest`` for ``request``.

        Raises:
            ReplayError: If the digest was already consumed
        """
        key = digest_hex(digest)
        entry = ConsumedAuthorization(
            digest=key,
            user=request.user,
            pid=request.pid,
            amount=request.amount,
            deadline=request.deadline,
            consumed_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )

        async with self._locks.hold(key, operation="consume"):
            consumed = await self.store.try_consume(entry)

        if not consumed:
            logger.info(f"Replay rejected for digest {key} (user {request.user})")
            raise ReplayError("Authorization has already been used", details=key)

        logger.debug(f"Consumed digest {key} for {request.user}")
        await self._maybe_prune()
        return entry

    async def record_result(
        self, digest: bytes, tx_hash: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        await self.store.record_result(digest_hex(digest), tx_hash=tx_hash, error=error)

    async def prune(self) -> int:
        """Delete records that are past both retention bounds."""
        now = self._clock()
        consumed_before = datetime.fromtimestamp(now - self.retention_seconds, tz=timezone.utc)
        deadline_before = int(now) - self.deadline_margin_seconds
        removed = await self.store.prune(consumed_before, deadline_before)
        self._last_prune = now
        if removed:
            logger.info(f"Pruned {removed} expired replay records")
        return removed

    async def _maybe_prune(self) -> None:
        if self._clock() - self._last_prune < self.prune_interval_seconds:
            return
        try:
            await self.prune()
        except Exception as e:
            # Pruning is housekeeping; consumption already succeeded
            logger.warning(f"Replay record pruning failed: {e}")
