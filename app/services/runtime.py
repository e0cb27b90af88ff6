from __future__ import annotations

from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Mapping

from ..config import Settings, settings
from ..loader import LoadedConfig, load_config
from ..storage.repo import ExecutionStateStore, make_store
from .executor import TaskExecutor, process_environment
from .http_client import HttpDispatcher


class Runtime:
    """Everything one process needs to execute the configured tasks."""

    def __init__(self, config: LoadedConfig, store: ExecutionStateStore, cfg: Settings = settings,
                 dispatcher: HttpDispatcher | None = None):
        self.config = config
        self.store = store
        self.settings = cfg
        self.executor = TaskExecutor(
            store=store,
            dispatcher=dispatcher or HttpDispatcher(),
            environment=environment_provider(cfg.env_resolution),
            default_timeout=cfg.request_timeout_seconds,
        )


def environment_provider(mode: str) -> Callable[[], Mapping[str, str]]:
    mode = mode.lower()
    if mode == "cycle":
        return process_environment
    if mode == "load":
        frozen = MappingProxyType(process_environment())
        return lambda: frozen
    raise ValueError(f"Unsupported env resolution mode: {mode}")


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return Runtime(config=load_config(settings.tasks_config_path), store=make_store())
