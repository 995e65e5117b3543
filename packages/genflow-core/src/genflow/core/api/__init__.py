"""Public, stable API surface for genflow.

If you're writing plugins, declaring your own flows or calling flows from
your own codebase, import from **`genflow.core.api`**.

Everything outside this package is considered internal and may change without
notice, even in minor releases.
"""

from __future__ import annotations

# Connector contracts
from genflow.core.connectors import require, require_attr
from genflow.core.connectors.base import BaseConnector, ConnectorBase, ConnectorInit, ModelBackend, StoreBackend
from genflow.core.connectors.manager import Backends
# Flow context + engine
from genflow.core.context import FlowContext
from genflow.core.engine import Flow, FlowDefinition, define_flow, flow
# Diagnostics
from genflow.core.diagnostics import check_store_health
# Common exceptions
from genflow.core.exception import (
    BackendUnavailable,
    ConnectorError,
    CorruptRecord,
    EmptyResponse,
    FlowDefinitionError,
    FlowExecutionError,
    GenflowError,
    MalformedResponse,
    ModelInvocationError,
    NotFound,
    SchemaValidationError,
    StoreError,
    StoreUnavailable,
    TemplateError,
)
from genflow.core.invoker import invoke
from genflow.core.observability import FLOW_FAILED, FLOW_STUBBED, FLOW_SUCCESS, MetricsSink
from genflow.core.plugins import load_all_plugins
# Registries (flows/connectors)
from genflow.core.registry.connectors import get_connector, list_connectors, register_connector
from genflow.core.registry.flows import get_flow, list_flows
from genflow.core.resolution import compile_template, render_string
# Settings
from genflow.core.runtime.settings import Settings, load_settings
# Schemas (Pydantic models)
from genflow.core.spec import (
    DataUri,
    GenerationConfig,
    MediaPart,
    ModelRequest,
    PromptRecord,
    RawResponse,
    SavePromptInput,
    WireModel,
)
from genflow.core.store import PromptStore

__all__ = [
    # flows
    "define_flow",
    "flow",
    "Flow",
    "FlowDefinition",
    "FlowContext",
    "get_flow",
    "list_flows",
    "FLOW_SUCCESS",
    "FLOW_FAILED",
    "FLOW_STUBBED",
    "MetricsSink",
    # templates + invocation
    "compile_template",
    "render_string",
    "invoke",
    # settings
    "Settings",
    "load_settings",
    "load_all_plugins",
    # spec
    "WireModel",
    "DataUri",
    "MediaPart",
    "GenerationConfig",
    "ModelRequest",
    "RawResponse",
    "PromptRecord",
    "SavePromptInput",
    # store
    "PromptStore",
    "check_store_health",
    # connectors
    "ConnectorBase",
    "ConnectorInit",
    "BaseConnector",
    "ModelBackend",
    "StoreBackend",
    "Backends",
    "register_connector",
    "get_connector",
    "list_connectors",
    "require",
    "require_attr",
    # exceptions
    "GenflowError",
    "SchemaValidationError",
    "TemplateError",
    "FlowDefinitionError",
    "FlowExecutionError",
    "ModelInvocationError",
    "BackendUnavailable",
    "EmptyResponse",
    "MalformedResponse",
    "StoreError",
    "NotFound",
    "StoreUnavailable",
    "CorruptRecord",
    "ConnectorError",
]
