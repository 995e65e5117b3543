from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Dict

from genflow.core.exception import FlowDefinitionError

if TYPE_CHECKING:
    from genflow.core.engine import Flow


class FlowRegistry:
    """Name -> Flow map. Names are unique; a second registration is an authoring error."""

    def __init__(self) -> None:
        self._items: Dict[str, "Flow"] = {}
        self._lock = threading.Lock()

    def register(self, flow: "Flow") -> "Flow":
        with self._lock:
            if flow.name in self._items:
                raise FlowDefinitionError(f"Flow already defined: {flow.name}")
            self._items[flow.name] = flow
        return flow

    def unregister(self, name: str) -> None:
        with self._lock:
            self._items.pop(name, None)

    def get(self, name: str) -> "Flow":
        if name not in self._items:
            raise KeyError(f"Unknown flow: {name}. Loaded: {self.list()}")
        return self._items[name]

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def list(self) -> list[str]:
        return sorted(self._items.keys())


# Singleton registry used by core + plugins
REGISTRY = FlowRegistry()


def get_flow(name: str) -> "Flow":
    return REGISTRY.get(name)


def list_flows() -> list[str]:
    return REGISTRY.list()
