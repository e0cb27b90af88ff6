import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List

import redis
from loguru import logger

from .schema import ExecutionRecord
from ..config import settings
from ..errors import PersistenceError
from ..utils.timefmt import ensure_utc, parse_rfc3339


class ExecutionStateStore:
    """Last successful execution time per task.

    Writes for one task name are serialised and never move the watermark
    backwards. Distinct task names do not contend with each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, task_name: str) -> datetime | None:
        raise NotImplementedError

    def put(self, task_name: str, timestamp: datetime) -> None:
        timestamp = ensure_utc(timestamp)
        with self._lock_for(task_name):
            with self._write_lock(task_name):
                current = self.get(task_name)
                if current is not None and current > timestamp:
                    logger.bind(task=task_name).warning(
                        "Skipping watermark write {}: stored watermark {} is newer", timestamp, current
                    )
                    return
                self._write(task_name, timestamp)

    def records(self) -> List[ExecutionRecord]:
        raise NotImplementedError

    def _write(self, task_name: str, timestamp: datetime) -> None:
        raise NotImplementedError

    def _write_lock(self, task_name: str):
        return _NoLock()

    def _lock_for(self, task_name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(task_name)
            if lock is None:
                lock = self._locks[task_name] = threading.Lock()
            return lock


class _NoLock:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class InMemoryStateStore(ExecutionStateStore):
    def __init__(self):
        super().__init__()
        self._data: Dict[str, datetime] = {}

    def get(self, task_name: str) -> datetime | None:
        return self._data.get(task_name)

    def records(self) -> List[ExecutionRecord]:
        return [ExecutionRecord(task_name=k, last_execute_time=v) for k, v in sorted(self._data.items())]

    def _write(self, task_name: str, timestamp: datetime) -> None:
        self._data[task_name] = timestamp


class RedisStateStore(ExecutionStateStore):
    def __init__(self, client: redis.Redis | None = None, lock_timeout: float = 30):
        super().__init__()
        self.r = client if client is not None else redis.from_url(settings.redis_url, decode_responses=True)
        self.lock_timeout = lock_timeout

    def _key(self, task_name: str) -> str:
        return f"execution:{task_name}"

    def get(self, task_name: str) -> datetime | None:
        try:
            raw = self.r.hget(self._key(task_name), "last_execute_time")
        except redis.RedisError as exc:
            raise PersistenceError(f"cannot read execution record of {task_name}: {exc}") from exc
        if not raw:
            return None
        try:
            return parse_rfc3339(raw)
        except ValueError as exc:
            raise PersistenceError(f"corrupt execution record of {task_name}: {raw!r}") from exc

    def put(self, task_name: str, timestamp: datetime) -> None:
        try:
            super().put(task_name, timestamp)
        except redis.RedisError as exc:
            raise PersistenceError(f"cannot write execution record of {task_name}: {exc}") from exc

    def records(self) -> List[ExecutionRecord]:
        out = []
        try:
            keys = sorted(self.r.scan_iter(match="execution:*"))
        except redis.RedisError as exc:
            raise PersistenceError(f"cannot list execution records: {exc}") from exc
        for key in keys:
            name = key.split(":", 1)[1]
            ts = self.get(name)
            if ts is not None:
                out.append(ExecutionRecord(task_name=name, last_execute_time=ts))
        return out

    def _write(self, task_name: str, timestamp: datetime) -> None:
        self.r.hset(self._key(task_name), mapping={
            "task_name": task_name,
            "last_execute_time": timestamp.isoformat(),
        })

    @contextmanager
    def _write_lock(self, task_name: str):
        # serialises writers living in other worker processes too
        lock = self.r.lock(f"lock:execution:{task_name}", timeout=self.lock_timeout, blocking_timeout=self.lock_timeout)
        if not lock.acquire():
            raise PersistenceError(f"timed out waiting for the write lock of {task_name}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockNotOwnedError:
                # the write itself went through, only the lock expired under it
                logger.bind(task=task_name).warning("Write lock of {} expired before release", task_name)


def make_store(backend: str | None = None) -> ExecutionStateStore:
    backend = (backend or settings.state_backend).lower()
    if backend == "redis":
        return RedisStateStore()
    if backend == "memory":
        return InMemoryStateStore()
    raise ValueError(f"Unsupported state backend: {backend}")
