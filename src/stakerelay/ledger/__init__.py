"""Persistent storage for replay protection."""

from stakerelay.ledger.database import Database
from stakerelay.ledger.models import Base, ReplayRecord, ReplayStatus
from stakerelay.ledger.repository import ReplayRepository

__all__ = [
    "Base",
    "Database",
    "ReplayRecord",
    "ReplayRepository",
    "ReplayStatus",
]
