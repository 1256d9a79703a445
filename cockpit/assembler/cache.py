"""
Widget data cache - ``get(key)`` / ``set(key, data, ttl)``.

Provides:
- cache_key: identity of (metric, resolved filter context, scope, cross-filters),
  prefixed by the metric's dataset so one dataset's entries can be dropped together
- MemoryCache: in-process TTL cache
- RedisCache: redis.asyncio, JSON payloads stored with SETEX
"""
import hashlib
import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import redis.asyncio as redis

from cockpit.compiler.sql import override_parameters
from cockpit.core.constants import CACHE_BACKEND, REDIS_KEY_PREFIX, REDIS_URL
from cockpit.filters.context import FilterContext, RowLevelScope
from cockpit.metrics.models import MetricDefinition
from cockpit.utils.log_utils import get_logger

from .widget_data import widget_data_from_dict

logger = get_logger(__name__)


def cache_key(
    metric: MetricDefinition,
    context: FilterContext,
    scope: Optional[RowLevelScope] = None,
    cross_filters: Sequence[Tuple[str, Any]] = (),
) -> str:
    """
    Hash of everything that changes the compiled queries.

    The full metric definition is included so an edited metric never serves
    results computed for its previous version.
    """
    content = json.dumps(
        {
            "metric": metric.model_dump(mode="json"),
            "context": context.fingerprint(),
            "scope": scope.to_dict() if scope else None,
            "crossFilters": [[f, v] for f, v in cross_filters],
            "parameters": override_parameters(context) if metric.use_raw_query else None,
        },
        sort_keys=True,
        default=str,
    )
    digest = hashlib.sha256(content.encode()).hexdigest()[:32]
    return f"{dataset_prefix(metric.dataset_id)}metric:{metric.id}:{digest}"


def dataset_prefix(dataset_id: Optional[str]) -> str:
    """Key prefix shared by every cached widget computed from one dataset."""
    return f"dataset:{dataset_id or '-'}:"


class WidgetCache(ABC):

    @abstractmethod
    async def get(self, key: str):
        pass

    @abstractmethod
    async def set(self, key: str, data, ttl: int) -> None:
        pass

    @abstractmethod
    async def clear(self, prefix: str = "") -> int:
        """Drop every entry whose key starts with ``prefix``; returns how many."""
        pass

    async def close(self) -> None:
        pass


class MemoryCache(WidgetCache):
    """Entries are stored serialized so callers can never mutate a cached payload."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    async def get(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        logger.debug(f"Cache hit {key}")
        return widget_data_from_dict(payload)

    async def set(self, key: str, data, ttl: int) -> None:
        if ttl <= 0:
            return
        self._entries[key] = (self._clock() + ttl, data.model_dump(mode="json"))

    async def clear(self, prefix: str = "") -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


def _glob_escape(text: str) -> str:
    """Escape SCAN MATCH metacharacters so ids are matched literally."""
    return re.sub(r"([*?\[\]\\])", r"\\\1", text)


class RedisCache(WidgetCache):

    def __init__(self, redis_url: str = REDIS_URL, prefix: str = REDIS_KEY_PREFIX, client=None):
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis = client or redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str):
        raw = await self._redis.get(f"{self.prefix}{key}")
        if raw is None:
            return None
        logger.debug(f"Cache hit {key}")
        return widget_data_from_dict(json.loads(raw))

    async def set(self, key: str, data, ttl: int) -> None:
        if ttl <= 0:
            return
        await self._redis.setex(f"{self.prefix}{key}", ttl, json.dumps(data.model_dump(mode="json")))

    async def clear(self, prefix: str = "") -> int:
        removed = 0
        async for key in self._redis.scan_iter(match=f"{_glob_escape(self.prefix + prefix)}*"):
            removed += await self._redis.delete(key)
        return removed

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Disconnected from Redis")


def create_cache(backend: str = CACHE_BACKEND) -> WidgetCache:
    if backend == "redis":
        logger.info(f"Using Redis widget cache at {REDIS_URL}")
        return RedisCache()
    return MemoryCache()
