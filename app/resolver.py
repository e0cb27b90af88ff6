from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import MissingSource, UnresolvedEnv
from .tasks import TaskDescriptor
from .utils.timefmt import format_rfc3339
from .values import (
    Array,
    Boolean,
    EnvRef,
    Integer,
    Node,
    Null,
    Object,
    Source,
    SourceRef,
    String,
    Template,
)


@dataclass(frozen=True)
class ResolutionContext:
    now: datetime
    last_execute_time: Optional[datetime] = None
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # resolution must not see changes made to the caller's mapping
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))


@dataclass(frozen=True)
class ResolvedRequest:
    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...]
    body: Any = None
    has_body: bool = False


def resolve(node: Node, ctx: ResolutionContext) -> Any:
    if isinstance(node, String):
        return node.literal
    if isinstance(node, Integer):
        return node.literal
    if isinstance(node, Boolean):
        return node.literal
    if isinstance(node, Null):
        return None
    if isinstance(node, Object):
        resolved: Dict[str, Any] = {}
        for name, child in node.properties:
            resolved[name] = resolve(child, ctx)
        return resolved
    if isinstance(node, Array):
        return [resolve(item, ctx) for item in node.items]
    if isinstance(node, SourceRef):
        return _resolve_source(node.source, ctx)
    if isinstance(node, EnvRef):
        return _lookup_env(node.name, ctx)
    if isinstance(node, Template):
        chunks: List[str] = []
        for part in node.parts:
            chunks.append(_lookup_env(part.name, ctx) if isinstance(part, EnvRef) else part)
        return "".join(chunks)
    raise TypeError(f"not a value node: {node!r}")


def resolve_text(node: Node, ctx: ResolutionContext) -> str:
    """Resolve a scalar node and render it the way it goes on the wire in a header or URL."""
    value = resolve(node, ctx)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_request(task: TaskDescriptor, ctx: ResolutionContext) -> ResolvedRequest:
    url = resolve_text(task.url, ctx)
    headers = tuple((name, resolve_text(node, ctx)) for name, node in task.headers)
    body = resolve(task.body, ctx) if task.body is not None else None
    return ResolvedRequest(
        method=task.method.value,
        url=url,
        headers=headers,
        body=body,
        has_body=task.body is not None,
    )


def _resolve_source(source: Source, ctx: ResolutionContext) -> str:
    if source is Source.EXECUTE_TIME:
        return format_rfc3339(ctx.now)
    if source is Source.LAST_EXECUTE_TIME:
        if ctx.last_execute_time is None:
            raise MissingSource(source.value)
        return format_rfc3339(ctx.last_execute_time)
    raise TypeError(f"unknown source {source!r}")


def _lookup_env(name: str, ctx: ResolutionContext) -> str:
    try:
        return ctx.environment[name]
    except KeyError:
        raise UnresolvedEnv(name) from None
