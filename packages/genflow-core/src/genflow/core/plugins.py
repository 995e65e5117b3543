from __future__ import annotations

import importlib
import logging
from importlib.metadata import entry_points

log = logging.getLogger("genflow.core.plugins")


def load_plugins_from_entrypoints(group: str = "genflow.plugins", *, strict: bool = True) -> None:
    try:
        eps = entry_points().select(group=group)
    except Exception as e:
        if strict:
            raise RuntimeError(f"Failed reading entry points for group={group}: {e}") from e
        log.warning("Failed reading entry points; continuing", exc_info=True)
        eps = []
    for ep in eps:
        try:
            obj = ep.load()
            if callable(obj):
                obj()
            elif hasattr(obj, "register"):
                obj.register()
        except Exception as e:
            if strict:
                raise RuntimeError(f"Failed loading entry point plugin {ep.name}: {e}") from e
            log.warning(f"Failed loading entry point plugin {ep.name}; continuing", exc_info=True)


def load_plugins_from_modules(modules: list[str], *, strict: bool = True) -> None:
    """Import modules that register flows or connectors as a side effect."""
    for name in modules:
        if not name:
            continue
        try:
            importlib.import_module(name)
        except Exception as e:
            if strict:
                raise RuntimeError(f"Failed loading flow module {name}: {e}") from e
            log.warning(f"Failed loading flow module {name}; continuing", exc_info=True)


def load_all_plugins(*, settings) -> None:
    load_plugins_from_entrypoints(strict=settings.plugin_strict)
    load_plugins_from_modules(settings.flow_modules, strict=settings.plugin_strict)
