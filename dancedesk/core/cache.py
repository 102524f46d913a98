"""Per-tenant TTL cache for dashboard report queries.

Entries are keyed by ``(tenant_id, report)``. Writes that change what a report
counts (purchases, bookings, cancellations) drop the tenant's entries so the
dashboard never lags behind the school's own actions.
"""

import time
import uuid
from typing import Any

_cache: dict[tuple[uuid.UUID, str], tuple[float, Any]] = {}

DEFAULT_TTL = 30  # seconds


def get(tenant_id: uuid.UUID, report: str, ttl: float = DEFAULT_TTL) -> Any | None:
    entry = _cache.get((tenant_id, report))
    if entry is None:
        return None
    stored_at, value = entry
    if time.monotonic() - stored_at > ttl:
        _cache.pop((tenant_id, report), None)
        return None
    return value


def put(tenant_id: uuid.UUID, report: str, value: Any) -> None:
    _cache[(tenant_id, report)] = (time.monotonic(), value)


def invalidate_tenant(tenant_id: uuid.UUID) -> None:
    for key in [k for k in _cache if k[0] == tenant_id]:
        _cache.pop(key, None)


def clear() -> None:
    _cache.clear()
