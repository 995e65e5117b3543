from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from genflow.core.spec import ModelRequest, RawResponse

log = logging.getLogger("genflow.core.connectors")


@runtime_checkable
class ConnectorBase(Protocol):
    """
    Public connector contract.

    A connector is a thin, reusable wrapper around a concrete transport/driver
    (HTTP client for a model API, DB connection for the record store, ...).

    Connectors should:
      - be safe to instantiate multiple times
      - not mutate global state
      - honor timeouts from their options
      - expose a best-effort lifecycle via close() / context manager
    """

    name: str
    kind: str
    driver: str
    config: Dict[str, Any]
    options: Dict[str, Any]

    def close(self) -> None: ...

    def __enter__(self): ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


@runtime_checkable
class ModelBackend(ConnectorBase, Protocol):
    """kind="model": one generation call per request. No retries."""

    async def generate(self, request: ModelRequest) -> RawResponse: ...


@runtime_checkable
class StoreBackend(ConnectorBase, Protocol):
    """kind="store": a small document API over named collections.

    Every method is synchronous and atomic per document.
    """

    def add(self, collection: str, data: Dict[str, Any]) -> str: ...
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...
    def merge(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...
    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...
    def stream(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]: ...
    def ping(self) -> str: ...


@dataclass
class ConnectorInit:
    name: str
    kind: str
    driver: str
    config: Dict[str, Any]
    options: Dict[str, Any]
    settings: Any | None = None


def _opt(options: dict, *keys: str, default=None):
    cur = options
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


class BaseConnector:
    """Small concrete base for built-in connectors (keeps init consistent)."""

    def __init__(self, init: ConnectorInit):
        self.name = init.name
        self.kind = init.kind
        self.driver = init.driver
        self.config = init.config or {}
        self.options = init.options or {}
        self.settings = init.settings

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind}:{self.driver} name={self.name}>"

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.close()
        except Exception:
            log.warning("non-critical connector operation failed; continuing", exc_info=True)
