from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from .errors import DefinitionError
from .values import SCALAR_NODES, Node

DEFAULT_SUCCESS_STATUS_CODES: FrozenSet[int] = frozenset({200})


class Method(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


@dataclass(frozen=True)
class TaskDescriptor:
    name: str
    method: Method
    url: Node
    headers: Tuple[Tuple[str, Node], ...] = ()
    success_status_codes: FrozenSet[int] = DEFAULT_SUCCESS_STATUS_CODES
    body: Optional[Node] = None
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if not self.name:
            raise DefinitionError("task name must not be empty")
        if not isinstance(self.url, SCALAR_NODES):
            raise DefinitionError("url must be text", path="url")
        seen = set()
        for name, node in self.headers:
            if name.lower() in seen:
                raise DefinitionError(f"duplicate header '{name}'", path="headers")
            seen.add(name.lower())
            if not isinstance(node, SCALAR_NODES):
                raise DefinitionError("header values must be scalar", path=f"headers.{name}")
        if not self.success_status_codes:
            object.__setattr__(self, "success_status_codes", DEFAULT_SUCCESS_STATUS_CODES)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise DefinitionError("timeout_seconds must be positive", path="timeout_seconds")

    def accepts(self, status_code: int) -> bool:
        return status_code in self.success_status_codes
