from __future__ import annotations

import os
from importlib import import_module
from typing import List

from pydantic import BaseModel, Field

_TRUE = ("1", "true", "yes", "on")


def _csv(raw: str | None) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


class Settings(BaseModel):
    # Defaults are static. Use load_settings(env=...) to read from an env snapshot.
    log_level: str = "INFO"

    # Observability
    # - log_format: "text" (default) or "json". When json, genflow logs emit a single JSON
    #   object per line, suitable for log aggregation.
    log_format: str = "text"

    # Optional metrics sink module (exposes METRICS: MetricsSink)
    metrics_module: str | None = None

    # Generative backend
    # - model_driver: "gemini" | "openai" | "stub" (or any plugin-registered driver)
    model_driver: str = "gemini"
    default_model: str = "gemini-1.5-flash"
    model_api_key: str | None = None
    model_base_url: str | None = None
    model_timeout: float = 60.0

    # Flows answered from their stub/placeholder instead of the backend.
    stub_flows: List[str] = Field(default_factory=list)

    # Record store
    # - store_driver: "memory" | "sqlite3" | "sqlalchemy" | "noop"
    store_driver: str = "memory"
    store_url: str | None = None

    # Connector caching
    # - "process" (default) reuses connectors across calls in the same Python process
    # - "run" caches within a single Backends accessor
    # - "none" disables caching
    # The memory store lives inside its connector instance: with "run", a flow
    # call without a shared Backends sees a fresh, empty store; with "none",
    # every lookup does.
    connector_cache_default: str = "process"

    # Extra modules imported to register flows/connectors.
    flow_modules: List[str] = Field(default_factory=list)
    plugin_strict: bool = True

    def is_stubbed(self, flow_name: str) -> bool:
        return self.model_driver == "stub" or flow_name in self.stub_flows

    @classmethod
    def from_env(cls, env: dict[str, str], overrides: dict | None = None) -> "Settings":
        """Build Settings from an explicit env snapshot (does not read os.environ)."""
        def g(key: str, default: str | None = None) -> str | None:
            return env.get(key, default)  # type: ignore[return-value]

        data = {
            "log_level": g("GENFLOW_LOG_LEVEL", "INFO"),
            "log_format": g("GENFLOW_LOG_FORMAT", "text"),
            "metrics_module": g("GENFLOW_METRICS_MODULE") or None,
            "model_driver": (g("GENFLOW_MODEL_DRIVER", "gemini") or "gemini").strip().lower(),
            "default_model": g("GENFLOW_DEFAULT_MODEL", "gemini-1.5-flash"),
            "model_api_key": g("GENFLOW_MODEL_API_KEY") or g("GEMINI_API_KEY") or None,
            "model_base_url": g("GENFLOW_MODEL_BASE_URL") or None,
            "model_timeout": float(g("GENFLOW_MODEL_TIMEOUT", "60") or 60),
            "stub_flows": _csv(g("GENFLOW_STUB_FLOWS")),
            "store_driver": (g("GENFLOW_STORE_DRIVER", "memory") or "memory").strip().lower(),
            "store_url": g("GENFLOW_STORE_URL") or None,
            "connector_cache_default": (g("GENFLOW_CONNECTOR_CACHE_DEFAULT", "process") or "process").strip().lower(),
            "flow_modules": _csv(g("GENFLOW_FLOW_MODULES")),
            "plugin_strict": (g("GENFLOW_PLUGIN_STRICT", "true") or "true").lower() in _TRUE,
        }
        if overrides:
            data.update(overrides)
        return cls(**data)


def load_settings(overrides: dict | None = None, *, env: dict[str, str] | None = None) -> Settings:
    """Load settings from (1) env snapshot, (2) optional settings module, (3) explicit overrides.

    If env is not provided, we build a snapshot from os.environ plus env files.
    """
    if env is None:
        from genflow.core.runtime.envfiles import build_env_snapshot

        env2 = build_env_snapshot(os.environ)
    else:
        env2 = env
    s = Settings.from_env(env2)
    mod = env2.get("GENFLOW_SETTINGS_MODULE")
    if mod:
        m = import_module(mod)
        data = getattr(m, "SETTINGS", {})
        if not isinstance(data, dict):
            raise TypeError("GENFLOW_SETTINGS_MODULE must expose SETTINGS: dict")
        s = s.model_copy(update=data)
    if overrides:
        s = s.model_copy(update=overrides)
    return s
