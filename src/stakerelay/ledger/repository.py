"""Repository for replay record operations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stakerelay.ledger.models import ReplayRecord, ReplayStatus


class ReplayRepository:
    """Repository for all replay-record database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, record: ReplayRecord) -> ReplayRecord:
        """Insert a new record.

        Raises:
            sqlalchemy.exc.IntegrityError: If the digest already exists
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def get(self, digest: str) -> Optional[ReplayRecord]:
        """Get a record by digest."""
        stmt = select(ReplayRecord).where(ReplayRecord.digest == digest)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_submitted(self, digest: str, tx_hash: str) -> None:
        """Attach the transaction hash of an accepted submission."""
        stmt = (
            update(ReplayRecord)
            .where(ReplayRecord.digest == digest)
            .values(status=ReplayStatus.SUBMITTED.value, tx_hash=tx_hash, error_message=None)
        )
        await self.session.execute(stmt)

    async def mark_failed(self, digest: str, error: str) -> None:
        """Record a submission failure without releasing the digest."""
        stmt = (
            update(ReplayRecord)
            .where(ReplayRecord.digest == digest)
            .values(status=ReplayStatus.FAILED.value, error_message=error[:2000])
        )
        await self.session.execute(stmt)

    async def list_failed(self, limit: int = 100) -> list[ReplayRecord]:
        """Records whose submission failed, oldest first."""
        stmt = (
            select(ReplayRecord)
            .where(ReplayRecord.status == ReplayStatus.FAILED.value)
            .order_by(ReplayRecord.consumed_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_expired(self, consumed_before: datetime, deadline_before: int) -> int:
        """Delete records past both their retention window and deadline margin."""
        stmt = delete(ReplayRecord).where(
            ReplayRecord.consumed_at < consumed_before,
            ReplayRecord.expires_at < deadline_before,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
