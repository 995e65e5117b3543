from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from genflow.core.connectors.base import ConnectorBase, ConnectorInit
from genflow.core.exception import ConnectorError


class ConnectorRegistry:
    """
    Registry + factory for connectors.

    Supports decorator registration:
        @registry.register("model", "gemini")
        class GeminiModel: ...

    And factory instantiation that binds a resolved backend config:
        conn = registry.create(name="model", kind="model", driver="gemini", config=..., options=..., settings=...)
    """

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Type] = {}

    def register(self, kind: str, driver: str):
        def deco(cls):
            self._items[(kind, driver)] = cls
            return cls
        return deco

    def unregister(self, kind: str, driver: str) -> None:
        self._items.pop((kind, driver), None)

    def get(self, kind: str, driver: str):
        key = (kind, driver)
        if key not in self._items:
            avail = self.list()
            raise ConnectorError(f"Unknown connector: {kind}:{driver}. Loaded: {avail}")
        return self._items[key]

    def list(self, kind: str | None = None) -> list[str]:
        return sorted(f"{k}:{d}" for (k, d) in self._items.keys() if kind is None or k == kind)

    def create(
        self,
        *,
        name: str,
        kind: str,
        driver: str,
        config: dict,
        options: dict | None = None,
        settings: Any | None = None,
    ) -> ConnectorBase:
        Cls = self.get(kind, driver)
        return Cls(ConnectorInit(name=name, kind=kind, driver=driver, config=config, options=options or {}, settings=settings))


# Singleton registry used by core + plugins
REGISTRY = ConnectorRegistry()


def register_connector(kind: str, driver: str):
    return REGISTRY.register(kind, driver)


def get_connector(kind: str, driver: str):
    return REGISTRY.get(kind, driver)


def list_connectors(kind: str | None = None) -> list[str]:
    return REGISTRY.list(kind)
