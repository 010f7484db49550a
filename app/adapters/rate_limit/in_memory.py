"""In-memory quota store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Lost on restart.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading

from app.adapters.rate_limit.base import AbstractQuotaStore, QuotaRecord


class InMemoryQuotaStore(AbstractQuotaStore):
    """Quota store backed by a dict keyed by ``prefix:identifier``.

    Coroutines never await, so a check against this store never suspends
    the request handler.

    Important:
        If the API runs with multiple workers (e.g., multiple Uvicorn
        workers), each worker keeps its own independent quotas.
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, QuotaRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    async def load(self, key: str) -> QuotaRecord | None:
        with self._lock:
            return self._records.get(key)

    async def save(self, key: str, record: QuotaRecord) -> None:
        with self._lock:
            self._records[key] = record

    async def purge(self, key_prefix: str, older_than: float) -> int:
        prefix = f"{key_prefix}:"
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if key.startswith(prefix) and record.last_reset < older_than
            ]
            for key in stale:
                del self._records[key]
        return len(stale)
