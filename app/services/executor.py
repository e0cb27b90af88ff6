"""One execution cycle of an HTTP task.

The cycle walks IDLE -> CONTEXT_BUILT -> RESOLVED -> DISPATCHED -> VALIDATED
and ends in SUCCEEDED, FAILED or CANCELLED. Nothing is retried here; the
outcome goes back to whoever scheduled the cycle.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

from loguru import logger

from ..config import settings
from ..errors import (
    CycleCancelled,
    ErrorKind,
    PersistenceError,
    ResolutionError,
    TaskRunnerError,
    TransportError,
    UnexpectedStatus,
)
from ..resolver import ResolutionContext, resolve_request
from ..tasks import TaskDescriptor
from ..utils.timefmt import utcnow
from .http_client import HttpDispatcher, HttpResponse, PreparedRequest
from ..storage.repo import ExecutionStateStore


class ExecutionState(str, Enum):
    IDLE = "IDLE"
    CONTEXT_BUILT = "CONTEXT_BUILT"
    RESOLVED = "RESOLVED"
    DISPATCHED = "DISPATCHED"
    VALIDATED = "VALIDATED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class CycleOutcome:
    task_name: str
    state: ExecutionState
    reached: ExecutionState
    now: Optional[datetime] = None
    last_execute_time: Optional[datetime] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[bytes] = None
    high_severity: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is ExecutionState.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "task_name": self.task_name,
            "state": self.state.value,
            "reached": self.reached.value,
            "now": self.now.isoformat() if self.now else None,
            "last_execute_time": self.last_execute_time.isoformat() if self.last_execute_time else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "status_code": self.status_code,
            "response_body": self.response_body.decode("utf-8", "replace") if self.response_body is not None else None,
            "high_severity": self.high_severity,
        }


def process_environment() -> Dict[str, str]:
    return dict(os.environ)


class TaskExecutor:
    def __init__(
        self,
        store: ExecutionStateStore,
        dispatcher: HttpDispatcher,
        clock: Callable[[], datetime] = utcnow,
        environment: Callable[[], Mapping[str, str]] = process_environment,
        default_timeout: float | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.environment = environment
        self.default_timeout = default_timeout or settings.request_timeout_seconds

    def run(self, task: TaskDescriptor, cancel: threading.Event | None = None) -> CycleOutcome:
        cancel = cancel or threading.Event()
        log = logger.bind(task=task.name)
        outcome = CycleOutcome(task_name=task.name, state=ExecutionState.IDLE, reached=ExecutionState.IDLE)

        try:
            self._check_cancel(cancel)

            ctx = self._build_context(task)
            outcome.now = ctx.now
            outcome.last_execute_time = ctx.last_execute_time
            outcome.reached = ExecutionState.CONTEXT_BUILT
            self._check_cancel(cancel)

            resolved = resolve_request(task, ctx)
            outcome.reached = ExecutionState.RESOLVED
            self._check_cancel(cancel)

            request = PreparedRequest.from_resolved(resolved)

            log.debug("Dispatching {} {}", request.method, request.url)
            response = self.dispatcher.send(request, timeout=task.timeout_seconds or self.default_timeout)
            outcome.reached = ExecutionState.DISPATCHED
            outcome.status_code = response.status_code
            outcome.response_body = response.body
            self._check_cancel(cancel)

            self._validate(task, response)
            outcome.reached = ExecutionState.VALIDATED

            # past validation the exchange is settled, cancellation no longer applies
            self.store.put(task.name, ctx.now)
        except CycleCancelled as exc:
            outcome.state = ExecutionState.CANCELLED
            outcome.error_kind = exc.kind
            outcome.error = exc.message
            log.warning("Cycle cancelled after {}", outcome.reached.value)
            return outcome
        except PersistenceError as exc:
            self._fail(outcome, exc)
            if outcome.reached is ExecutionState.VALIDATED:
                outcome.high_severity = True
                log.critical("HTTP call succeeded but watermark was not stored: {}", exc)
            else:
                log.error("Cannot read execution state: {}", exc)
            return outcome
        except (ResolutionError, TransportError, UnexpectedStatus) as exc:
            self._fail(outcome, exc)
            log.error("Cycle failed after {} ({}): {}", outcome.reached.value, exc.kind.value, exc)
            return outcome

        outcome.state = ExecutionState.SUCCEEDED
        log.info("Cycle succeeded with status {}, watermark {}", outcome.status_code, outcome.now)
        return outcome

    def _build_context(self, task: TaskDescriptor) -> ResolutionContext:
        last = self.store.get(task.name)
        return ResolutionContext(now=self.clock(), last_execute_time=last, environment=self.environment())

    @staticmethod
    def _validate(task: TaskDescriptor, response: HttpResponse) -> None:
        if not task.accepts(response.status_code):
            raise UnexpectedStatus(response.status_code, response.body)

    @staticmethod
    def _check_cancel(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise CycleCancelled("execution cycle cancelled")

    @staticmethod
    def _fail(outcome: CycleOutcome, exc: TaskRunnerError) -> None:
        outcome.state = ExecutionState.FAILED
        outcome.error_kind = exc.kind
        outcome.error = exc.message
