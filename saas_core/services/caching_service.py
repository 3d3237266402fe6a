"""
Caching layer for organization-scoped entitlement reads.

Keys are built from a typed ``PlanCacheKey`` and an organization id so the
read path and the invalidation path can never drift apart. Every entry is
tagged with its organization, which lets writers evict everything derived
from that organization in one call.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import redis

from ..config import settings

logger = logging.getLogger(__name__)


class PlanCacheKey(str, Enum):
    """Kinds of memoized organization reads"""
    CURRENT_PLAN = "current_plan"
    HAS_ACTIVE_PLAN = "has_active_plan"
    ACTIVE_PLANS = "active_plans"
    YEARLY_ANCHOR = "yearly_anchor"
    USAGE = "usage"
    EFFECTIVE_LIMIT = "limit"
    HAS_FEATURE = "has_feature"


# Keys evicted explicitly on every plan association write
PLAN_STATE_KEYS = (
    PlanCacheKey.CURRENT_PLAN,
    PlanCacheKey.HAS_ACTIVE_PLAN,
    PlanCacheKey.ACTIVE_PLANS,
    PlanCacheKey.YEARLY_ANCHOR,
)


class CacheStore(ABC):
    """Minimal cache contract: key get/set/delete plus tag-based bulk eviction."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        ...

    @abstractmethod
    def delete(self, *keys: str) -> int:
        ...

    @abstractmethod
    def invalidate_tag(self, tag: str) -> int:
        ...


class RedisCacheStore(CacheStore):
    """Redis-backed store. Each tag is a Redis set holding the keys tagged with it."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: Optional[str] = None):
        self.redis_client = redis_client or redis.from_url(
            settings.REDIS_URL, db=settings.REDIS_CACHE_DB, decode_responses=True
        )
        self.prefix = prefix or settings.CACHE_KEY_PREFIX

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    @staticmethod
    def _serialize_data(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _deserialize_data(data: Any) -> Any:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    def get(self, key: str) -> Optional[Any]:
        # Reads are advisory: a broken cache degrades to a miss
        try:
            data = self.redis_client.get(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None
        if data is None:
            return None
        try:
            return self._deserialize_data(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Cache payload for key {key} is corrupt: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        full_key = self._key(key)
        try:
            pipe = self.redis_client.pipeline()
            pipe.setex(full_key, ttl, self._serialize_data(value))
            for tag in tags:
                tag_key = self._tag_key(tag)
                pipe.sadd(tag_key, full_key)
                # The tag set must outlive every member it tracks
                pipe.expire(tag_key, max(ttl, settings.CACHE_TTL_YEARLY_ANCHOR))
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Cache set error for key {key}: {e}")

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self.redis_client.delete(*[self._key(k) for k in keys]))

    def invalidate_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)
        members = self.redis_client.smembers(tag_key)
        pipe = self.redis_client.pipeline()
        if members:
            pipe.delete(*members)
        pipe.delete(tag_key)
        pipe.execute()
        return len(members)


class InMemoryCacheStore(CacheStore):
    """Process-local store with expiry, for tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[float, str]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        payload = json.dumps(value, default=str)
        with self._lock:
            self._data[key] = (self._clock() + ttl, payload)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._data.pop(key, None) is not None:
                    removed += 1
        return removed

    def invalidate_tag(self, tag: str) -> int:
        with self._lock:
            members = self._tags.pop(tag, set())
            for key in members:
                self._data.pop(key, None)
        return len(members)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class OrganizationCache:
    """
    Cache view scoped to one organization.

    Args:
        store: Backing cache store
        organization_id: Organization whose reads are memoized
    """

    def __init__(self, store: CacheStore, organization_id: int):
        self.store = store
        self.organization_id = organization_id

    @property
    def tag(self) -> str:
        return f"org:{self.organization_id}"

    def key(self, kind: PlanCacheKey, *parts: Any) -> str:
        suffix = "".join(f":{p}" for p in parts)
        return f"org:{self.organization_id}:{kind.value}{suffix}"

    def get(self, kind: PlanCacheKey, *parts: Any) -> Tuple[bool, Any]:
        """Return (hit, value). Values are boxed so a cached None is still a hit."""
        boxed = self.store.get(self.key(kind, *parts))
        if isinstance(boxed, dict) and "v" in boxed:
            return True, boxed["v"]
        return False, None

    def set(self, kind: PlanCacheKey, value: Any, ttl: int, *parts: Any) -> None:
        self.store.set(self.key(kind, *parts), {"v": value}, ttl, tags=(self.tag,))

    def remember(self, kind: PlanCacheKey, ttl: int, compute: Callable[[], Any], *parts: Any) -> Any:
        hit, value = self.get(kind, *parts)
        if hit:
            return value
        value = compute()
        self.set(kind, value, ttl, *parts)
        return value

    def evict_plan_state(self) -> None:
        """Evict plan keys and everything tagged with the organization. Errors propagate."""
        self.store.delete(*[self.key(kind) for kind in PLAN_STATE_KEYS])
        evicted = self.store.invalidate_tag(self.tag)
        logger.debug(f"Evicted plan cache for organization {self.organization_id} ({evicted} tagged keys)")

    def evict_feature(self, feature: str, workspace_id: Optional[int] = None) -> None:
        # The organization total sums workspace rows too
        keys = [
            self.key(PlanCacheKey.USAGE, feature, "org"),
            self.key(PlanCacheKey.EFFECTIVE_LIMIT, feature),
            self.key(PlanCacheKey.HAS_FEATURE, feature),
        ]
        if workspace_id is not None:
            keys.append(self.key(PlanCacheKey.USAGE, feature, workspace_id))
        self.store.delete(*keys)


_default_store: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    """Process-wide store chosen by settings.CACHE_BACKEND (created lazily)."""
    global _default_store
    if _default_store is None:
        if settings.CACHE_BACKEND == "memory":
            _default_store = InMemoryCacheStore()
        else:
            _default_store = RedisCacheStore()
    return _default_store


def set_cache_store(store: Optional[CacheStore]) -> None:
    global _default_store
    _default_store = store
