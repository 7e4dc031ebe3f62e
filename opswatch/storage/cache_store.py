"""
Shared keyed store used for alert deduplication, error counters and history.

Two backends are provided: Redis for multi-process deployments and an
in-process store for tests and single-worker setups. Both expose atomic
set-if-absent and increment-and-read primitives; callers must never split a
check and a claim across two calls.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import redis

from opswatch.utils.exceptions import ConfigError, StoreError


logger = logging.getLogger(__name__)


class KeyValueStore:
    """Base class for keyed stores."""

    driver = 'base'

    def __init__(self, prefix: str = ''):
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def add(self, key: str, value: Any, ttl: int) -> bool:
        """Store value only if key is absent. Returns True if this call created it."""
        raise NotImplementedError("Subclasses must implement add")

    def incr(self, key: str, ttl: int) -> int:
        """Atomically increment a counter and return the new value.

        The TTL is applied when the counter is created and not extended by
        later increments, so a counter dies with its window.
        """
        raise NotImplementedError("Subclasses must implement incr")

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError("Subclasses must implement get")

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        raise NotImplementedError("Subclasses must implement set")

    def delete(self, key: str) -> bool:
        raise NotImplementedError("Subclasses must implement delete")

    def push_bounded(self, key: str, value: Any, maxlen: int, ttl: int) -> int:
        """Append to a list, keep only the newest ``maxlen`` items, return its length."""
        raise NotImplementedError("Subclasses must implement push_bounded")

    def get_list(self, key: str) -> List[Any]:
        raise NotImplementedError("Subclasses must implement get_list")

    def ping(self) -> bool:
        raise NotImplementedError("Subclasses must implement ping")

    def info(self) -> Dict[str, Any]:
        """Backend statistics, empty when the backend has none."""
        return {}


class MemoryStore(KeyValueStore):
    """
    In-process store with per-key expiry.

    All operations take a single lock, which makes add/incr atomic for every
    thread in the process. Values are JSON-encoded like the Redis backend so
    both behave the same for callers. Expired keys are dropped when read and
    by a sweep run from writes at most every ``sweep_interval`` seconds.
    """

    driver = 'memory'

    def __init__(self, prefix: str = '', clock: Callable[[], float] = time.monotonic,
                 sweep_interval: float = 60.0):
        super().__init__(prefix)
        self._clock = clock
        self._data: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def _purge_if_expired(self, key: str) -> None:
        expires_at = self._expires.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _set_expiry(self, key: str, ttl: Optional[int]) -> None:
        if ttl is None:
            self._expires.pop(key, None)
        else:
            self._expires[key] = self._clock() + ttl

    def _sweep_expired(self, force: bool = False) -> None:
        now = self._clock()
        if not force and now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        for key, expires_at in list(self._expires.items()):
            if now >= expires_at:
                self._data.pop(key, None)
                self._expires.pop(key, None)

    def add(self, key: str, value: Any, ttl: int) -> bool:
        key = self._key(key)
        with self._lock:
            self._sweep_expired()
            self._purge_if_expired(key)
            if key in self._data:
                return False
            self._data[key] = json.dumps(value)
            self._set_expiry(key, ttl)
            return True

    def incr(self, key: str, ttl: int) -> int:
        key = self._key(key)
        with self._lock:
            self._sweep_expired()
            self._purge_if_expired(key)
            if key not in self._data:
                self._data[key] = json.dumps(0)
                self._set_expiry(key, ttl)
            value = int(json.loads(self._data[key])) + 1
            self._data[key] = json.dumps(value)
            return value

    def get(self, key: str, default: Any = None) -> Any:
        key = self._key(key)
        with self._lock:
            self._purge_if_expired(key)
            if key not in self._data:
                self._misses += 1
                return default
            self._hits += 1
            return json.loads(self._data[key])

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        key = self._key(key)
        with self._lock:
            self._sweep_expired()
            self._data[key] = json.dumps(value)
            self._set_expiry(key, ttl)

    def delete(self, key: str) -> bool:
        key = self._key(key)
        with self._lock:
            self._purge_if_expired(key)
            self._expires.pop(key, None)
            return self._data.pop(key, None) is not None

    def push_bounded(self, key: str, value: Any, maxlen: int, ttl: int) -> int:
        key = self._key(key)
        with self._lock:
            self._sweep_expired()
            self._purge_if_expired(key)
            items = json.loads(self._data[key]) if key in self._data else []
            items.append(value)
            items = items[-maxlen:]
            self._data[key] = json.dumps(items)
            self._set_expiry(key, ttl)
            return len(items)

    def get_list(self, key: str) -> List[Any]:
        value = self.get(key, [])
        return value if isinstance(value, list) else []

    def ping(self) -> bool:
        return True

    def info(self) -> Dict[str, Any]:
        with self._lock:
            self._sweep_expired(force=True)
            return {
                'keys': len(self._data),
                'keyspace_hits': self._hits,
                'keyspace_misses': self._misses
            }


class RedisStore(KeyValueStore):
    """Redis-backed store. Atomicity comes from SET NX and MULTI/EXEC."""

    driver = 'redis'

    def __init__(self, url: str = 'redis://localhost:6379/0', prefix: str = '',
                 socket_timeout: float = 2.0, client: Optional[redis.Redis] = None):
        super().__init__(prefix)
        self.url = url
        self._client = client or redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True
        )

    @property
    def client(self) -> redis.Redis:
        return self._client

    def add(self, key: str, value: Any, ttl: int) -> bool:
        try:
            return bool(self._client.set(self._key(key), json.dumps(value), nx=True, ex=ttl))
        except redis.RedisError as e:
            raise StoreError(f"Redis add failed for {key}: {e}") from e

    def incr(self, key: str, ttl: int) -> int:
        full_key = self._key(key)
        try:
            # SET NX EX seeds the counter with its TTL; INCR keeps the TTL.
            pipe = self._client.pipeline(transaction=True)
            pipe.set(full_key, 0, nx=True, ex=ttl)
            pipe.incr(full_key)
            _, value = pipe.execute()
            return int(value)
        except redis.RedisError as e:
            raise StoreError(f"Redis incr failed for {key}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            raise StoreError(f"Redis get failed for {key}: {e}") from e
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            self._client.set(self._key(key), json.dumps(value), ex=ttl)
        except redis.RedisError as e:
            raise StoreError(f"Redis set failed for {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(self._key(key)))
        except redis.RedisError as e:
            raise StoreError(f"Redis delete failed for {key}: {e}") from e

    def push_bounded(self, key: str, value: Any, maxlen: int, ttl: int) -> int:
        full_key = self._key(key)
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.rpush(full_key, json.dumps(value))
            pipe.ltrim(full_key, -maxlen, -1)
            pipe.expire(full_key, ttl)
            length, _, _ = pipe.execute()
            return min(int(length), maxlen)
        except redis.RedisError as e:
            raise StoreError(f"Redis push failed for {key}: {e}") from e

    def get_list(self, key: str) -> List[Any]:
        try:
            raw_items = self._client.lrange(self._key(key), 0, -1)
        except redis.RedisError as e:
            raise StoreError(f"Redis lrange failed for {key}: {e}") from e
        items = []
        for raw in raw_items:
            try:
                items.append(json.loads(raw))
            except ValueError:
                logger.warning(f"Skipping undecodable list item in {key}")
        return items

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            raise StoreError(f"Redis ping failed: {e}") from e

    def info(self) -> Dict[str, Any]:
        try:
            info = self._client.info()
        except redis.RedisError as e:
            raise StoreError(f"Redis info failed: {e}") from e
        return {
            'connected_clients': info.get('connected_clients', 0),
            'used_memory': info.get('used_memory', 0),
            'used_memory_human': info.get('used_memory_human', '0B'),
            'keyspace_hits': info.get('keyspace_hits', 0),
            'keyspace_misses': info.get('keyspace_misses', 0)
        }


def create_store(config: Dict[str, Any]) -> KeyValueStore:
    """Build the configured store from an application config mapping."""
    driver = config.get('CACHE_DRIVER', 'memory')
    prefix = config.get('CACHE_PREFIX', 'opswatch:')

    if driver == 'redis':
        return RedisStore(
            url=config.get('REDIS_URL', 'redis://localhost:6379/0'),
            prefix=prefix,
            socket_timeout=config.get('PROBE_TIMEOUT', 2.0)
        )
    if driver == 'memory':
        return MemoryStore(prefix=prefix)

    raise ConfigError(f"Unknown cache driver: {driver}", {'driver': driver})
