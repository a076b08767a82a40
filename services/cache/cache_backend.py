# services/cache/cache_backend.py
"""
Two-level JSON cache: a per-process dict in front of an optional Redis.

The process level keeps entries for at most CACHE_LOCAL_TTL_SEC, so a value
another instance changed in Redis is picked up within that window. Without
REDIS_URL only the process level is used. Redis errors are logged and treated
as misses; callers always have the database to fall back on.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import redis

logger = logging.getLogger(__name__)

JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

DEFAULT_TTL_SEC = int(os.getenv("CACHE_DEFAULT_TTL_SEC", "60"))
LOCAL_CACHE_TTL_SEC = int(os.getenv("CACHE_LOCAL_TTL_SEC", "60"))
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "cultivate:")  # e.g. cultivate:prod:
REDIS_URL = os.getenv("REDIS_URL")

_local: Dict[str, Tuple[float, JsonValue]] = {}  # key -> (expires_at, value)
_local_lock = threading.Lock()
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    global _redis_client
    if _redis_client is None and REDIS_URL:
        _redis_client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    return _redis_client


def _remember(key: str, value: JsonValue, ttl_seconds: int) -> None:
    with _local_lock:
        _local[key] = (time.time() + min(ttl_seconds, LOCAL_CACHE_TTL_SEC), value)


def _recall(key: str) -> Tuple[bool, JsonValue]:
    """(found, value); ``None`` and ``False`` are legitimate cached values."""
    with _local_lock:
        entry = _local.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if time.time() > expires_at:
            del _local[key]
            return False, None
        return True, value


def cache_get(key: str) -> Optional[JsonValue]:
    found, value = _recall(key)
    if found:
        return value

    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(REDIS_PREFIX + key)
    except redis.RedisError as e:
        logger.warning("cache_redis_get_failed key=%s err=%s", key, type(e).__name__)
        return None
    if raw is None:
        return None

    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("cache_redis_payload_invalid key=%s", key)
        return None
    _remember(key, value, DEFAULT_TTL_SEC)
    return value


def cache_set(key: str, value: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
    ttl_seconds = int(ttl_seconds) if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SEC
    _remember(key, value, ttl_seconds)

    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(REDIS_PREFIX + key, ttl_seconds, json.dumps(value, separators=(",", ":")))
    except redis.RedisError as e:
        logger.warning("cache_redis_set_failed key=%s err=%s", key, type(e).__name__)


def cache_bump(key: str, ttl_seconds: int = DEFAULT_TTL_SEC) -> int:
    """Advance a counter used as a cache epoch and return its new value.

    Redis INCR keeps every instance on the same sequence; without Redis the
    counter starts from the clock so a restarted process never reuses one.
    """
    client = get_redis_client()
    if client is not None:
        try:
            pipe = client.pipeline()
            pipe.incr(REDIS_PREFIX + key)
            pipe.expire(REDIS_PREFIX + key, ttl_seconds)
            value = int(pipe.execute()[0])
            _remember(key, value, ttl_seconds)
            return value
        except redis.RedisError as e:
            logger.warning("cache_redis_incr_failed key=%s err=%s", key, type(e).__name__)

    found, current = _recall(key)
    value = (current + 1) if found and isinstance(current, int) else time.time_ns()
    _remember(key, value, ttl_seconds)
    return value


def cache_delete(*keys: str) -> None:
    keys = tuple(k for k in keys if k)
    if not keys:
        return
    with _local_lock:
        for key in keys:
            _local.pop(key, None)

    client = get_redis_client()
    if client is None:
        return
    try:
        client.delete(*(REDIS_PREFIX + k for k in keys))
    except redis.RedisError as e:
        logger.warning("cache_redis_delete_failed keys=%d err=%s", len(keys), type(e).__name__)


def cache_clear_local() -> None:
    with _local_lock:
        _local.clear()
