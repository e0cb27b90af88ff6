from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
import threading
import time

import pytest
import redis

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.errors import PersistenceError
from app.storage.repo import InMemoryStateStore, RedisStateStore, make_store

T1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=1)


class FakeRedis:
    """Just the hash and lock calls the store makes."""

    def __init__(self):
        self.hashes = {}
        self.locks = {}

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self.locks.setdefault(name, threading.Lock())

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [key for key in self.hashes if key.startswith(prefix)]


class BrokenRedis(FakeRedis):
    def hget(self, key, field):
        raise redis.ConnectionError("connection refused")

    def hset(self, key, mapping):
        raise redis.ConnectionError("connection refused")


def test_memory_store_roundtrip():
    store = InMemoryStateStore()

    assert store.get("a") is None
    store.put("a", T1)
    store.put("a", T2)

    assert store.get("a") == T2
    assert [r.task_name for r in store.records()] == ["a"]


def test_watermark_never_moves_backwards():
    store = InMemoryStateStore()
    store.put("a", T2)
    store.put("a", T1)

    assert store.get("a") == T2


def test_naive_timestamps_are_utc():
    store = InMemoryStateStore()
    store.put("a", datetime(2024, 1, 1))

    assert store.get("a") == T1


def test_writes_for_one_task_are_serialised():
    active = []
    overlaps = []

    class SlowStore(InMemoryStateStore):
        def _write(self, task_name, timestamp):
            active.append(task_name)
            if active.count(task_name) > 1:
                overlaps.append(task_name)
            time.sleep(0.01)
            super()._write(task_name, timestamp)
            active.remove(task_name)

    store = SlowStore()
    threads = [
        threading.Thread(target=store.put, args=(name, T1 + timedelta(seconds=i)))
        for i in range(10)
        for name in ("a", "b")
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert store.get("a") == T1 + timedelta(seconds=9)
    assert store.get("b") == T1 + timedelta(seconds=9)


def test_redis_store_roundtrip():
    client = FakeRedis()
    store = RedisStateStore(client=client)

    assert store.get("load_data") is None
    store.put("load_data", T1)

    assert client.hashes["execution:load_data"]["last_execute_time"] == "2024-01-01T00:00:00+00:00"
    assert store.get("load_data") == T1
    assert [r.task_name for r in store.records()] == ["load_data"]
    assert "lock:execution:load_data" in client.locks


def test_redis_errors_become_persistence_errors():
    store = RedisStateStore(client=BrokenRedis())

    with pytest.raises(PersistenceError):
        store.get("a")
    with pytest.raises(PersistenceError):
        store.put("a", T1)


def test_corrupt_record():
    client = FakeRedis()
    client.hset("execution:a", mapping={"last_execute_time": "yesterday"})

    with pytest.raises(PersistenceError):
        RedisStateStore(client=client).get("a")


def test_make_store():
    assert isinstance(make_store("memory"), InMemoryStateStore)
    with pytest.raises(ValueError):
        make_store("sqlite")


class ExpiringLock:
    """Redis lock whose timeout ran out while the write was in progress."""

    def __init__(self, acquired=True):
        self.acquired = acquired

    def acquire(self):
        return self.acquired

    def release(self):
        raise redis.exceptions.LockNotOwnedError("Cannot release a lock that's no longer owned")


class ExpiringLockRedis(FakeRedis):
    def __init__(self, acquired=True):
        super().__init__()
        self.acquired = acquired

    def lock(self, name, timeout=None, blocking_timeout=None):
        return ExpiringLock(self.acquired)


def test_expired_write_lock_keeps_the_write():
    store = RedisStateStore(client=ExpiringLockRedis())

    store.put("load_data", T1)

    assert store.get("load_data") == T1


def test_write_lock_not_acquired():
    client = ExpiringLockRedis(acquired=False)
    store = RedisStateStore(client=client)

    with pytest.raises(PersistenceError):
        store.put("load_data", T1)
    assert client.hashes == {}
