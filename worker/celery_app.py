import threading
from contextlib import contextmanager
from typing import Dict

import redis
from celery import Celery
from celery.signals import worker_process_init, worker_shutting_down
from loguru import logger

from app.config import settings

celery_app = Celery(
    "taskrunner",
    broker=settings.redis_url,
    backend=settings.redis_url,
)
celery_app.conf.beat_schedule = {
    "run-all-tasks": {
        "task": "run_all",
        "schedule": settings.schedule_interval_seconds,
    },
}

# cancel tokens of cycles running in this process
_running: Dict[str, threading.Event] = {}
_running_guard = threading.Lock()
_local_inflight: Dict[str, threading.Lock] = {}

INFLIGHT_MARGIN_SECONDS = 30


@worker_process_init.connect
def _setup_logging(**_):
    from app.logs import configure_logging
    configure_logging()


@worker_shutting_down.connect
def _cancel_running(**_):
    with _running_guard:
        for name, cancel in _running.items():
            logger.bind(task=name).warning("Worker shutting down, cancelling cycle")
            cancel.set()


@contextmanager
def inflight(runtime, task):
    """Hold the per-task in-flight guard; yields False when another cycle owns it."""
    from app.storage.repo import RedisStateStore

    timeout = (task.timeout_seconds or runtime.settings.request_timeout_seconds) + INFLIGHT_MARGIN_SECONDS
    if isinstance(runtime.store, RedisStateStore):
        lock = runtime.store.r.lock(f"inflight:{task.name}", timeout=timeout)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                except redis.exceptions.LockError:
                    logger.bind(task=task.name).warning("In-flight lock expired before release")
        return

    with _running_guard:
        lock = _local_inflight.setdefault(task.name, threading.Lock())
    acquired = lock.acquire(blocking=False)
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()


def execute(runtime, task_name: str) -> dict:
    task = runtime.config.get(task_name)
    if task is None:
        raise ValueError(f"Unknown task: {task_name}")

    with inflight(runtime, task) as acquired:
        if not acquired:
            logger.bind(task=task_name).info("Previous cycle still in flight, skipping")
            return {"task_name": task_name, "state": "SKIPPED"}

        cancel = threading.Event()
        with _running_guard:
            _running[task_name] = cancel
        try:
            outcome = runtime.executor.run(task, cancel=cancel)
        finally:
            with _running_guard:
                _running.pop(task_name, None)
    return outcome.to_dict()


@celery_app.task(name="run_task")
def run_task(task_name: str) -> dict:
    from app.services.runtime import get_runtime
    return execute(get_runtime(), task_name)


@celery_app.task(name="run_all")
def run_all() -> list:
    from app.services.runtime import get_runtime
    runtime = get_runtime()
    ids = []
    for name in runtime.config.names():
        ids.append(run_task.delay(name).id)
    return ids
