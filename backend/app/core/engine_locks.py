# backend/app/core/engine_locks.py
"""
Keyed serialization points for check-then-act regions.

Each key is guarded by an in-process lock; when REDIS_URL is configured a
Redis lock is taken as well so separate worker processes serialize too.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional

from redis import Redis
from redis.exceptions import LockError, RedisError

from app.core.config import settings
from app.core.exceptions import OperationInProgress
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: Dict[str, "_RefCountedLock"] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()


class _RefCountedLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


def appointment_pair_key(buyer_id: str, listing_id: str) -> str:
    return f"appointment:{buyer_id}:{listing_id}"


def appointment_payment_key(appointment_id: str) -> str:
    return f"appointment_payment:{appointment_id}"


def payment_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


def refund_request_key(request_id: str) -> str:
    return f"refund_request:{request_id}"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except RedisError as exc:
            logger.warning("engine_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def reset_redis_client() -> None:
    global _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        _SYNC_REDIS = None


def _checkout_local(key: str) -> _RefCountedLock:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(key)
        if entry is None:
            entry = _RefCountedLock()
            _LOCAL_LOCKS[key] = entry
        entry.holders += 1
        return entry


def _checkin_local(key: str, entry: _RefCountedLock) -> None:
    with _LOCAL_LOCKS_GUARD:
        entry.holders -= 1
        if entry.holders == 0 and _LOCAL_LOCKS.get(key) is entry:
            del _LOCAL_LOCKS[key]


@contextmanager
def keyed_lock(
    key: str,
    *,
    timeout_s: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[None]:
    """
    Hold the serialization point for ``key`` for the duration of the block.

    Raises:
        OperationInProgress: if the lock cannot be acquired within ``timeout_s``
    """
    timeout = settings.lock_timeout_seconds if timeout_s is None else timeout_s
    ttl = settings.lock_ttl_seconds if ttl_s is None else ttl_s
    started = time.monotonic()

    entry = _checkout_local(key)
    if not entry.lock.acquire(timeout=timeout):
        _checkin_local(key, entry)
        prometheus_metrics.record_engine_lock("acquire", "timeout")
        logger.warning("engine_lock_timeout", extra={"lock_key": key, "scope": "local"})
        raise OperationInProgress(key)

    redis_lock = None
    try:
        client = _get_sync_redis()
        if client is not None:
            remaining = max(0.0, timeout - (time.monotonic() - started))
            redis_lock = client.lock(
                _namespaced_key(key),
                timeout=ttl,
                blocking=True,
                blocking_timeout=remaining,
            )
            try:
                acquired = redis_lock.acquire()
            except RedisError as exc:
                # Redis outage degrades to in-process serialization only.
                prometheus_metrics.record_engine_lock("acquire", "redis_error")
                logger.warning(
                    "engine_lock_redis_acquire_failed",
                    extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
                )
                redis_lock = None
                acquired = True
            if not acquired:
                redis_lock = None
                prometheus_metrics.record_engine_lock("acquire", "timeout")
                logger.warning("engine_lock_timeout", extra={"lock_key": key, "scope": "redis"})
                raise OperationInProgress(key)

        prometheus_metrics.record_engine_lock("acquire", "success")
        yield
    finally:
        if redis_lock is not None:
            try:
                redis_lock.release()
            except (LockError, RedisError) as exc:
                logger.warning(
                    "engine_lock_redis_release_failed",
                    extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
                )
        entry.lock.release()
        _checkin_local(key, entry)
