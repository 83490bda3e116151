"""Utility modules for stakerelay."""

from stakerelay.utils.locks import KeyedLock, LockTimeoutError

__all__ = ["KeyedLock", "LockTimeoutError"]
