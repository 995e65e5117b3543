"""genflow core package.

Public entrypoints:
- genflow.core.api: stable API surface for integrations/plugins
- genflow.core.engine.define_flow: declare a flow

Internal modules may change without notice.
"""

from __future__ import annotations

# Ensure built-in flows/connectors are registered on import.
from genflow.core.runtime import _bootstrap as _bootstrap  # noqa: F401

from genflow.core.engine import define_flow, flow
from genflow.core.registry.flows import get_flow

__all__ = ["define_flow", "flow", "get_flow"]
