from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import RedisError

from app.core import engine_locks
from app.core.engine_locks import appointment_pair_key, keyed_lock, payment_key
from app.core.exceptions import OperationInProgress


def test_keys_are_scoped_per_entity() -> None:
    assert appointment_pair_key("b1", "l1") == "appointment:b1:l1"
    assert payment_key("p1") == "payment:p1"


def test_keyed_lock_times_out_when_held_by_another_thread() -> None:
    held = threading.Event()
    release = threading.Event()

    def _holder() -> None:
        with keyed_lock("test:busy"):
            held.set()
            release.wait(timeout=5)

    worker = threading.Thread(target=_holder)
    worker.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(OperationInProgress) as exc_info:
            with keyed_lock("test:busy", timeout_s=0.05):
                pass
        assert exc_info.value.code == "OPERATION_IN_PROGRESS"
    finally:
        release.set()
        worker.join(timeout=5)


def test_keyed_lock_is_released_after_exception() -> None:
    with pytest.raises(ValueError):
        with keyed_lock("test:release"):
            raise ValueError("boom")

    with keyed_lock("test:release", timeout_s=0.05):
        pass
    assert "test:release" not in engine_locks._LOCAL_LOCKS


def test_keyed_lock_uses_redis_when_available() -> None:
    redis_lock = MagicMock()
    redis_lock.acquire.return_value = True
    client = MagicMock()
    client.lock.return_value = redis_lock

    with patch.object(engine_locks, "_get_sync_redis", return_value=client):
        with keyed_lock("test:redis", ttl_s=7):
            pass

    args, kwargs = client.lock.call_args
    assert args[0].endswith(":lock:test:redis")
    assert kwargs["timeout"] == 7
    redis_lock.release.assert_called_once()


def test_keyed_lock_degrades_to_local_when_redis_fails() -> None:
    redis_lock = MagicMock()
    redis_lock.acquire.side_effect = RedisError("down")
    client = MagicMock()
    client.lock.return_value = redis_lock

    entered = False
    with patch.object(engine_locks, "_get_sync_redis", return_value=client):
        with keyed_lock("test:degraded"):
            entered = True

    assert entered
    redis_lock.release.assert_not_called()


def test_keyed_lock_raises_when_redis_lock_not_acquired() -> None:
    redis_lock = MagicMock()
    redis_lock.acquire.return_value = False
    client = MagicMock()
    client.lock.return_value = redis_lock

    with patch.object(engine_locks, "_get_sync_redis", return_value=client):
        with pytest.raises(OperationInProgress):
            with keyed_lock("test:contended"):
                pass
