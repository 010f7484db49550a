"""Factory for creating quota store instances."""

from app.adapters.rate_limit.base import AbstractQuotaStore
from app.adapters.rate_limit.in_memory import InMemoryQuotaStore
from app.adapters.rate_limit.sql import SqlQuotaStore
from app.core.config import RateLimitSettings, settings
from app.core.errors import ValidationAppError


def create_quota_store(rate_limit_settings: RateLimitSettings | None = None) -> AbstractQuotaStore:
    """Instantiate the quota store selected by configuration.

    Args:
        rate_limit_settings: Optional settings; defaults to global settings.

    Returns:
        AbstractQuotaStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryQuotaStore()

    if backend == "database":
        return SqlQuotaStore.from_url(cfg.database_url)

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: memory, database"
        ),
    )
