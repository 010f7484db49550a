"""Quota store interfaces and value types.

The limiter depends on this abstraction (not a concrete store) so the
per-process map and the shared database table are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class QuotaRecord:
    """Per-key quota state.

    Attributes:
        points: Remaining allowance in the current window.
        last_reset: UNIX epoch seconds when the current window began.
        blocked_until: UNIX epoch seconds until which every check is denied.
    """

    points: int
    last_reset: float
    blocked_until: float | None = None


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when denied).
        reset: Seconds until the window resets or the block lifts.
    """

    allowed: bool
    limit: int
    remaining: int
    reset: int

    @property
    def success(self) -> bool:
        return self.allowed


class AbstractQuotaStore(ABC):
    """Keyed storage for QuotaRecord values."""

    name: str = "abstract"

    @abstractmethod
    async def load(self, key: str) -> QuotaRecord | None:
        """Return the record stored under ``key`` or None when absent.

        Raises:
            StoreError: Backing store failure (never for a missing key).
        """
        raise NotImplementedError

    @abstractmethod
    async def save(self, key: str, record: QuotaRecord) -> None:
        """Insert or replace the record stored under ``key``.

        Raises:
            StoreError: Backing store failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def purge(self, key_prefix: str, older_than: float) -> int:
        """Delete records under ``key_prefix`` whose window began before ``older_than``.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
