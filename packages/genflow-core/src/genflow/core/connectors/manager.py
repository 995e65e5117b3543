from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from genflow.core.connectors.base import ConnectorBase
from genflow.core.exception import ConnectorError
from genflow.core.registry.connectors import REGISTRY
from genflow.core.runtime.settings import Settings

# Process-wide cache for connectors (cache="process").
_PROCESS_CACHE: Dict[Tuple[str, str, str], ConnectorBase] = {}
_PROCESS_LOCK = threading.Lock()
log = logging.getLogger("genflow.core.connectors.manager")

_POLICIES = ("process", "run", "none")


def _cache_key(kind: str, driver: str, config: dict) -> Tuple[str, str, str]:
    return (kind, driver, json.dumps(config, sort_keys=True, default=str))


def backend_config(kind: str, settings: Settings) -> dict:
    """Resolve {driver, config, options} for a backend kind from settings."""
    if kind == "model":
        return {
            "driver": settings.model_driver,
            "config": {
                "api_key": settings.model_api_key,
                "base_url": settings.model_base_url,
                "default_model": settings.default_model,
            },
            "options": {"timeout": settings.model_timeout},
        }
    if kind == "store":
        return {
            "driver": settings.store_driver,
            "config": {"url": settings.store_url},
            "options": {},
        }
    raise ConnectorError(f"Unknown backend kind: {kind}")


def reset_process_cache() -> None:
    """Close and forget every process-scoped connector."""
    with _PROCESS_LOCK:
        items = list(_PROCESS_CACHE.values())
        _PROCESS_CACHE.clear()
    for conn in items:
        try:
            conn.close()
        except Exception:
            log.warning("connector close failed; continuing", exc_info=True)


@dataclass
class Backends:
    """Connector accessor with caching + opt-out.

    Access patterns:
        model = backends.model()
        store = backends.store()

        # Generic
        c = backends.get(kind="store", driver="sqlite3")

        # Disable cache per-call
        c = backends.get(kind="model", cache="none")

    Caching policy resolution order:
        1) per-call override via cache=...
        2) Settings.connector_cache_default
    """

    settings: Settings

    # Run-scoped cache
    _run_cache: Dict[Tuple[str, str, str], ConnectorBase] = field(default_factory=dict, init=False, repr=False)

    def _policy_for(self, cache: Optional[str]) -> str:
        pol = (cache or self.settings.connector_cache_default or "process").strip().lower()
        if pol not in _POLICIES:
            raise ConnectorError(f"Unknown connector cache policy: {pol}. Expected one of {list(_POLICIES)}")
        return pol

    def _create(self, kind: str, driver: str, config: dict, options: dict) -> ConnectorBase:
        return REGISTRY.create(
            name=f"{kind}:{driver}",
            kind=kind,
            driver=driver,
            config=config,
            options=options,
            settings=self.settings,
        )

    def get(self, *, kind: str, driver: str | None = None, cache: Optional[str] = None) -> Any:
        resolved = backend_config(kind, self.settings)
        driver = driver or resolved["driver"]
        config, options = resolved["config"], resolved["options"]

        policy = self._policy_for(cache)
        key = _cache_key(kind, driver, config)

        if policy == "none":
            return self._create(kind, driver, config, options)

        if policy == "process":
            with _PROCESS_LOCK:
                if key in _PROCESS_CACHE:
                    return _PROCESS_CACHE[key]
                inst = self._create(kind, driver, config, options)
                _PROCESS_CACHE[key] = inst
                return inst

        # run
        if key in self._run_cache:
            return self._run_cache[key]
        inst = self._create(kind, driver, config, options)
        self._run_cache[key] = inst
        return inst

    # Convenience accessors
    def model(self, *, cache: Optional[str] = None):
        return self.get(kind="model", cache=cache)

    def store(self, *, cache: Optional[str] = None):
        return self.get(kind="store", cache=cache)

    def close_all(self) -> None:
        # Close run-scoped connectors. Process-scoped connectors remain alive.
        for conn in list(self._run_cache.values()):
            try:
                conn.close()
            except Exception:
                log.warning("connector close failed; continuing", exc_info=True)
        self._run_cache.clear()
