"""YAML configuration loader.

Turns the ``tasks:`` document into ``TaskDescriptor`` objects. Problems with a
single task are collected as ``DefinitionError`` and the task is left out;
problems with the document as a whole raise ``ConfigError``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
import yaml
from loguru import logger

from .errors import ConfigError, DefinitionError
from .tasks import Method, TaskDescriptor
from .values import (
    Array,
    Boolean,
    Integer,
    Node,
    Null,
    Object,
    SourceRef,
    String,
    text_node,
)

TYPE_TAG = "type"
VALUE_TAG = "value"
PROPERTIES_TAG = "properties"
ITEMS_TAG = "items"
SOURCE_TAG = "source"

NODE_TYPES = ("string", "integer", "boolean", "null", "object", "array", "source")
HEADER_TYPES = ("string", "integer", "boolean", "null", "source")
TASK_TYPES = ("http",)
BODY_KINDS = ("json",)


class _Mapping(dict):
    duplicate_keys: Tuple[str, ...] = ()


class _Loader(yaml.SafeLoader):
    pass


# YAML 1.2 booleans only: "yes"/"on" stay strings
_Loader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_Loader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def _construct_map(loader: _Loader, node: yaml.MappingNode):
    data = _Mapping()
    yield data
    value = loader.construct_mapping(node)
    keys = [loader.construct_object(key_node) for key_node, _ in node.value]
    data.update(value)
    data.duplicate_keys = tuple(sorted({str(k) for k in keys if keys.count(k) > 1}))


_Loader.add_constructor("tag:yaml.org,2002:map", _construct_map)


@dataclass(frozen=True)
class LoadedConfig:
    tasks: Tuple[TaskDescriptor, ...]
    errors: Tuple[DefinitionError, ...] = ()

    def get(self, name: str) -> Optional[TaskDescriptor]:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def names(self) -> List[str]:
        return [task.name for task in self.tasks]


def load_config(path: str | Path) -> LoadedConfig:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    config = parse_config(text)
    logger.info("Loaded {} task(s) from {} ({} rejected)", len(config.tasks), path, len(config.errors))
    return config


def parse_config(text: str) -> LoadedConfig:
    try:
        document = yaml.load(text, Loader=_Loader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid yaml: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigError("config must be a mapping with a 'tasks' list")
    if getattr(document, "duplicate_keys", ()):
        raise ConfigError(f"duplicate top-level keys {list(document.duplicate_keys)}")
    entries = document.get("tasks")
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise ConfigError("'tasks' must be a list")

    tasks: List[TaskDescriptor] = []
    errors: List[DefinitionError] = []
    names = set()
    for index, entry in enumerate(entries):
        name = entry.get("name") if isinstance(entry, dict) else None
        label = name if isinstance(name, str) and name else f"tasks[{index}]"
        try:
            task = parse_task(entry)
            if task.name in names:
                raise DefinitionError(f"duplicate task name '{task.name}'")
        except DefinitionError as err:
            err = err.at(label)
            err.task_name = name if isinstance(name, str) else None
            logger.error("Task {} excluded from scheduling: {}", label, err)
            errors.append(err)
            continue
        names.add(task.name)
        tasks.append(task)

    return LoadedConfig(tasks=tuple(tasks), errors=tuple(errors))


def parse_task(entry: Any) -> TaskDescriptor:
    entry = _require_mapping(entry, "task")

    task_type = _require(entry, "type")
    if task_type not in TASK_TYPES:
        raise DefinitionError(f"unknown task type {task_type!r}, expected one of {list(TASK_TYPES)}", path="type")

    name = _require(entry, "name")
    if not isinstance(name, str) or not name:
        raise DefinitionError("must be a non-empty string", path="name")

    method_raw = _require(entry, "method")
    try:
        method = Method(method_raw)
    except ValueError:
        raise DefinitionError(
            f"unknown method {method_raw!r}, expected one of {[m.value for m in Method]}", path="method"
        ) from None

    url = _parse_url(_require(entry, "url"))
    headers = _parse_headers(entry.get("headers"))
    codes = _parse_status_codes(entry.get("success_status_codes"))
    body = _parse_body(entry.get("body"))

    timeout = entry.get("timeout_seconds")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise DefinitionError("must be a number", path="timeout_seconds")

    return TaskDescriptor(
        name=name,
        method=method,
        url=url,
        headers=headers,
        success_status_codes=codes,
        body=body,
        timeout_seconds=float(timeout) if timeout is not None else None,
    )


def parse_node(entry: Any) -> Node:
    entry = _require_mapping(entry, "value")
    node_type = _node_type(entry)

    if node_type == "string":
        raw = _require(entry, VALUE_TAG)
        if not isinstance(raw, str):
            raise DefinitionError("string value expected", path=VALUE_TAG)
        return text_node(raw)
    if node_type == "integer":
        raw = _require(entry, VALUE_TAG)
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise DefinitionError("integer value expected", path=VALUE_TAG)
        return Integer(raw)
    if node_type == "boolean":
        return Boolean.parse(_require(entry, VALUE_TAG))
    if node_type == "null":
        return Null()
    if node_type == "object":
        return _parse_object(entry)
    if node_type == "array":
        return _parse_array(entry)
    if node_type == "source":
        return SourceRef(_require(entry, SOURCE_TAG))
    raise DefinitionError(f"unknown type {node_type!r}, expected one of {list(NODE_TYPES)}", path=TYPE_TAG)


def _parse_object(entry: Mapping[str, Any]) -> Object:
    properties = _require(entry, PROPERTIES_TAG)
    if not isinstance(properties, dict):
        raise DefinitionError("'properties' should be a map", path=PROPERTIES_TAG)
    _check_duplicates(properties, PROPERTIES_TAG)

    children = []
    for key, value in properties.items():
        if not isinstance(key, str):
            raise DefinitionError(f"property name {key!r} must be a string", path=PROPERTIES_TAG)
        try:
            children.append((key, parse_node(value)))
        except DefinitionError as err:
            raise err.at(f"{PROPERTIES_TAG}.{key}") from None
    return Object(tuple(children))


def _parse_array(entry: Mapping[str, Any]) -> Array:
    items = _require(entry, ITEMS_TAG)
    if not isinstance(items, list):
        raise DefinitionError("'items' should be a sequence", path=ITEMS_TAG)

    children = []
    for index, value in enumerate(items):
        try:
            children.append(parse_node(value))
        except DefinitionError as err:
            raise err.at(f"{ITEMS_TAG}[{index}]") from None
    return Array(tuple(children))


def _parse_url(raw: Any) -> Node:
    if not isinstance(raw, str) or not raw:
        raise DefinitionError("must be a non-empty string", path="url")
    try:
        node = text_node(raw)
    except DefinitionError as err:
        raise err.at("url") from None
    if isinstance(node, String):
        _check_url(raw)
    return node


def _check_url(text: str) -> None:
    try:
        url = httpx.URL(text)
    except httpx.InvalidURL as exc:
        raise DefinitionError(f"invalid url {text!r}: {exc}", path="url") from None
    if url.scheme not in ("http", "https") or not url.host:
        raise DefinitionError(f"url {text!r} must be absolute http(s)", path="url")


def _parse_headers(raw: Any) -> Tuple[Tuple[str, Node], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise DefinitionError("should be a map", path="headers")
    _check_duplicates(raw, "headers")

    headers = []
    for name, entry in raw.items():
        path = f"headers.{name}"
        if not isinstance(name, str) or not name:
            raise DefinitionError("header name must be a non-empty string", path="headers")
        try:
            node_type = _node_type(_require_mapping(entry, "header"))
            if node_type not in HEADER_TYPES:
                raise DefinitionError(
                    f"type {node_type!r} not allowed in headers, expected one of {list(HEADER_TYPES)}",
                    path=TYPE_TAG,
                )
            headers.append((name, parse_node(entry)))
        except DefinitionError as err:
            raise err.at(path) from None
    return tuple(headers)


def _parse_status_codes(raw: Any) -> frozenset:
    if raw is None:
        return frozenset()
    if not isinstance(raw, list):
        raise DefinitionError("should be a list of status codes", path="success_status_codes")
    codes = set()
    for code in raw:
        if isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 599:
            raise DefinitionError(f"invalid status code {code!r}", path="success_status_codes")
        codes.add(code)
    return frozenset(codes)


def _parse_body(raw: Any) -> Optional[Node]:
    if raw is None:
        return None
    raw = _require_mapping(raw, "body")
    if len(raw) != 1:
        raise DefinitionError(f"body needs exactly one of {list(BODY_KINDS)}", path="body")
    kind, entry = next(iter(raw.items()))
    if kind not in BODY_KINDS:
        raise DefinitionError(f"unknown body kind {kind!r}, expected one of {list(BODY_KINDS)}", path="body")
    try:
        return parse_node(entry)
    except DefinitionError as err:
        raise err.at(f"body.{kind}") from None


def _node_type(entry: Mapping[str, Any]) -> str:
    node_type = _require(entry, TYPE_TAG)
    if not isinstance(node_type, str):
        raise DefinitionError("invalid 'type' tag, quote it if it is \"null\"", path=TYPE_TAG)
    if node_type not in NODE_TYPES:
        raise DefinitionError(f"unknown type {node_type!r}, expected one of {list(NODE_TYPES)}", path=TYPE_TAG)
    return node_type


def _require(entry: Mapping[str, Any], key: str) -> Any:
    if key not in entry:
        raise DefinitionError(f"missing field '{key}'")
    return entry[key]


def _require_mapping(entry: Any, what: str) -> Dict[str, Any]:
    if not isinstance(entry, dict):
        raise DefinitionError(f"{what} must be a map")
    _check_duplicates(entry, "")
    return entry


def _check_duplicates(entry: Mapping[str, Any], path: str) -> None:
    duplicates = getattr(entry, "duplicate_keys", ())
    if duplicates:
        raise DefinitionError(f"duplicate keys {list(duplicates)}", path=path)
