"""Value expression nodes.

Headers, bodies and URLs are described by a small closed set of node types.
Literal nodes carry their value; ``SourceRef`` and ``EnvRef`` are deferred
references that only the resolver turns into concrete values. Nodes are frozen
and validate their payload on construction, so a node that exists is a valid
node.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

from .errors import DefinitionError
from .utils.env_template import EnvName, split_template

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_TRUE_SPELLINGS = {"true"}
_FALSE_SPELLINGS = {"false"}


class Source(str, Enum):
    LAST_EXECUTE_TIME = "last_execute_time"
    EXECUTE_TIME = "execute_time"


@dataclass(frozen=True)
class String:
    literal: str

    def __post_init__(self):
        if not isinstance(self.literal, str):
            raise DefinitionError(f"string value expected, got {type(self.literal).__name__}")


@dataclass(frozen=True)
class Integer:
    literal: int

    def __post_init__(self):
        # bool is an int subclass, it must not sneak in here
        if isinstance(self.literal, bool) or not isinstance(self.literal, int):
            raise DefinitionError(f"integer value expected, got {type(self.literal).__name__}")
        if not INT64_MIN <= self.literal <= INT64_MAX:
            raise DefinitionError(f"integer {self.literal} does not fit in 64 bits")


@dataclass(frozen=True)
class Boolean:
    literal: bool

    def __post_init__(self):
        if not isinstance(self.literal, bool):
            raise DefinitionError(f"boolean value expected, got {type(self.literal).__name__}")

    @classmethod
    def parse(cls, raw) -> "Boolean":
        if isinstance(raw, bool):
            return cls(raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_SPELLINGS:
                return cls(True)
            if lowered in _FALSE_SPELLINGS:
                return cls(False)
        raise DefinitionError(f"invalid boolean value {raw!r}")


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Object:
    properties: Tuple[Tuple[str, "Node"], ...] = ()

    def __post_init__(self):
        seen = set()
        for name, _ in self.properties:
            if name in seen:
                raise DefinitionError(f"duplicate property '{name}'")
            seen.add(name)


@dataclass(frozen=True)
class Array:
    items: Tuple["Node", ...] = ()


@dataclass(frozen=True)
class SourceRef:
    source: Source

    def __post_init__(self):
        if not isinstance(self.source, Source):
            try:
                object.__setattr__(self, "source", Source(self.source))
            except ValueError:
                raise DefinitionError(
                    f"unknown source {self.source!r}, expected one of "
                    f"{[s.value for s in Source]}"
                ) from None


@dataclass(frozen=True)
class EnvRef:
    name: str

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise DefinitionError("env reference needs a variable name")


@dataclass(frozen=True)
class Template:
    """Literal text with embedded ``env!(NAME)`` references."""

    parts: Tuple[Union[str, EnvRef], ...]

    def __post_init__(self):
        for part in self.parts:
            if not isinstance(part, (str, EnvRef)):
                raise DefinitionError(f"template part must be text or env reference, got {type(part).__name__}")
        if not any(isinstance(part, EnvRef) for part in self.parts):
            raise DefinitionError("template without env reference, use a string")


Node = Union[String, Integer, Boolean, Null, Object, Array, SourceRef, EnvRef, Template]

SCALAR_NODES = (String, Integer, Boolean, Null, SourceRef, EnvRef, Template)


def text_node(text: str) -> Node:
    """Build the node for a piece of text that may contain ``env!()`` fragments.

    Plain text stays a ``String``, a lone ``env!(NAME)`` becomes an ``EnvRef``,
    anything else a ``Template``.
    """
    parts = split_template(text)
    if not any(isinstance(p, EnvName) for p in parts):
        return String(text)
    if len(parts) == 1:
        return EnvRef(str(parts[0]))
    return Template(tuple(EnvRef(str(p)) if isinstance(p, EnvName) else p for p in parts))
