from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIG = "ConfigError"
    DEFINITION = "DefinitionError"
    MISSING_SOURCE = "MissingSource"
    UNRESOLVED_ENV = "UnresolvedEnv"
    TRANSPORT = "TransportError"
    UNEXPECTED_STATUS = "UnexpectedStatus"
    PERSISTENCE = "PersistenceError"
    CANCELLED = "Cancelled"


class TaskRunnerError(Exception):
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(TaskRunnerError):
    """The configuration document itself cannot be used."""

    kind = ErrorKind.CONFIG


class DefinitionError(TaskRunnerError):
    """A task or value node is malformed. Detected at load time."""

    kind = ErrorKind.DEFINITION

    def __init__(self, message: str, path: str = "", task_name: Optional[str] = None):
        self.reason = message
        self.path = path
        self.task_name = task_name
        super().__init__(f"{path}: {message}" if path else message)

    def at(self, prefix: str) -> "DefinitionError":
        path = f"{prefix}.{self.path}" if self.path else prefix
        return DefinitionError(self.reason, path=path, task_name=self.task_name)


class ResolutionError(TaskRunnerError):
    pass


class MissingSource(ResolutionError):
    kind = ErrorKind.MISSING_SOURCE

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"source '{source}' has no value for this execution")


class UnresolvedEnv(ResolutionError):
    kind = ErrorKind.UNRESOLVED_ENV

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"env {name} not found")


class TransportError(TaskRunnerError):
    kind = ErrorKind.TRANSPORT


class UnexpectedStatus(TaskRunnerError):
    kind = ErrorKind.UNEXPECTED_STATUS

    def __init__(self, status_code: int, body: bytes = b""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"unexpected response status {status_code}")


class PersistenceError(TaskRunnerError):
    kind = ErrorKind.PERSISTENCE


class CycleCancelled(TaskRunnerError):
    kind = ErrorKind.CANCELLED
