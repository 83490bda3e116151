"""SQLAlchemy models for replay protection."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Largest value a signed 64-bit BIGINT column can hold
BIGINT_MAX = 2**63 - 1


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ReplayStatus(str, Enum):
    """Outcome of a consumed authorization."""

    CONSUMED = "consumed"      # Digest recorded, submission pending
    SUBMITTED = "submitted"    # Accepted by the network
    FAILED = "failed"          # Submission failed after retries, needs out-of-band handling


class ReplayRecord(Base):
    """A consumed authorization digest.

    The primary key on ``digest`` is what makes consumption atomic across
    processes: a second insert of the same digest fails.
    """

    __tablename__ = "replay_records"
    __table_args__ = (Index("ix_replay_records_expires_at", "expires_at"),)

    digest: Mapped[str] = mapped_column(String(66), primary_key=True)
    user: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    pid: Mapped[str] = mapped_column(String(80), nullable=False)  # uint256 as decimal string
    amount: Mapped[str] = mapped_column(String(80), nullable=False)  # uint256 as decimal string
    deadline: Mapped[str] = mapped_column(String(80), nullable=False)  # uint256 as decimal string
    # Deadline clamped to the BIGINT range; only used to select prunable rows
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    consumed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ReplayStatus.CONSUMED.value, nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
