"""Quota store adapters.

This package provides a small abstraction layer so the portal can run with
a per-process store in development and a shared database table in
production without changing the limiter or the API layer.
"""

from app.adapters.rate_limit.base import AbstractQuotaStore, QuotaRecord, RateLimitResult
from app.adapters.rate_limit.factory import create_quota_store
from app.adapters.rate_limit.in_memory import InMemoryQuotaStore
from app.adapters.rate_limit.sql import SqlQuotaStore

__all__ = [
    "AbstractQuotaStore",
    "InMemoryQuotaStore",
    "QuotaRecord",
    "RateLimitResult",
    "SqlQuotaStore",
    "create_quota_store",
]
