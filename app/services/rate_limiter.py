"""Fixed-window quota limiter with a post-exhaustion block.

Each identifier gets ``points`` requests per ``duration`` seconds. Once the
points are spent, the next check starts a block of ``block_duration``
seconds during which every check is denied. Records expire lazily: a
window or block only resets when a later check observes that it elapsed.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractQuotaStore, QuotaRecord, RateLimitResult


@dataclass(frozen=True)
class RateLimiterOptions:
    """Limiter configuration.

    Attributes:
        points: Max requests per window.
        duration: Window length in seconds.
        block_duration: Cooldown in seconds imposed after exhaustion.
        key_prefix: Namespace for identifiers sharing one store.
    """

    points: int
    duration: int
    block_duration: int
    key_prefix: str


def _ceil_seconds(seconds: float) -> int:
    return max(0, math.ceil(seconds))


class RateLimiter:
    """Quota limiter over an injected store.

    Configuration values are not validated: ``points <= 0`` denies every
    check, which is a valid if degenerate setup.
    """

    def __init__(
        self,
        options: RateLimiterOptions,
        store: AbstractQuotaStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.options = options
        self.store = store
        self._clock = clock

    def key_for(self, identifier: str) -> str:
        return f"{self.options.key_prefix}:{identifier}"

    def _fresh(self, now: float) -> QuotaRecord:
        return QuotaRecord(points=self.options.points, last_reset=now, blocked_until=None)

    def _current(self, record: QuotaRecord | None, now: float) -> QuotaRecord:
        """Apply lazy window reset and block expiry to a loaded record."""

        if record is None:
            return self._fresh(now)
        if now - record.last_reset >= self.options.duration:
            return self._fresh(now)
        if record.blocked_until is not None and now >= record.blocked_until:
            return self._fresh(now)
        return record

    def _window_reset(self, record: QuotaRecord, now: float) -> int:
        return _ceil_seconds(record.last_reset + self.options.duration - now)

    def _denied(self, reset: int) -> RateLimitResult:
        return RateLimitResult(allowed=False, limit=self.options.points, remaining=0, reset=reset)

    async def check(self, identifier: str) -> RateLimitResult:
        """Consume one point for ``identifier``.

        Args:
            identifier: Client identifier (e.g., IP address).

        Returns:
            RateLimitResult with the decision and quota metadata.

        Raises:
            StoreError: If the backing store fails.
        """
        key = self.key_for(identifier)
        now = self._clock()
        record = self._current(await self.store.load(key), now)

        if record.blocked_until is not None:
            return self._denied(_ceil_seconds(record.blocked_until - now))

        if record.points <= 0:
            record = QuotaRecord(
                points=0,
                last_reset=record.last_reset,
                blocked_until=now + self.options.block_duration,
            )
            await self.store.save(key, record)
            return self._denied(self.options.block_duration)

        record = QuotaRecord(
            points=min(record.points, self.options.points) - 1,
            last_reset=record.last_reset,
            blocked_until=None,
        )
        await self.store.save(key, record)
        return RateLimitResult(
            allowed=True,
            limit=self.options.points,
            remaining=record.points,
            reset=self._window_reset(record, now),
        )

    async def is_rate_limited(self, identifier: str) -> bool:
        result = await self.check(identifier)
        return not result.allowed

    async def get_state(self, identifier: str) -> RateLimitResult:
        """Report the current quota for ``identifier`` without consuming it."""

        now = self._clock()
        record = self._current(await self.store.load(self.key_for(identifier)), now)

        if record.blocked_until is not None:
            return self._denied(_ceil_seconds(record.blocked_until - now))

        remaining = max(0, min(record.points, self.options.points))
        return RateLimitResult(
            allowed=remaining > 0,
            limit=self.options.points,
            remaining=remaining,
            reset=self._window_reset(record, now),
        )

    async def cleanup(self, retention_seconds: int) -> int:
        """Purge records whose window started more than ``retention_seconds`` ago."""

        cutoff = self._clock() - retention_seconds
        return await self.store.purge(self.options.key_prefix, cutoff)
