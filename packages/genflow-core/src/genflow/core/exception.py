"""Centralized customized exceptions for genflow.

All project-specific exceptions live in this module. Internal code should
prefer explicit imports:

    from genflow.core.exception import SchemaValidationError

Taxonomy:
- SchemaValidationError: caller-supplied value does not match a schema.
- TemplateError: a flow definition carries a broken prompt template.
- FlowDefinitionError: a flow registry rule was broken (e.g. duplicate name).
- ModelInvocationError (BackendUnavailable, EmptyResponse, MalformedResponse):
  the generative backend failed.
- FlowExecutionError: a flow call failed; wraps the underlying cause.
- StoreError (NotFound, StoreUnavailable, CorruptRecord): document store failures.
"""

from __future__ import annotations

from typing import Any, Iterable

__all__ = [
    "GenflowError",
    "SchemaValidationError",
    "TemplateError",
    "TemplateSyntaxError",
    "TemplateMissingKeyError",
    "FlowDefinitionError",
    "ModelInvocationError",
    "BackendUnavailable",
    "EmptyResponse",
    "MalformedResponse",
    "FlowExecutionError",
    "StoreError",
    "NotFound",
    "StoreUnavailable",
    "CorruptRecord",
    "ConnectorError",
]


class GenflowError(Exception):
    """Base class for every genflow error."""


class SchemaValidationError(GenflowError, ValueError):
    """Raised when a value does not satisfy a flow schema.

    `issues` is a list of {loc, code, msg} dicts, one per offending field.
    """

    def __init__(self, issues: Iterable[dict], *, schema: str | None = None):
        self.issues = [dict(i) for i in issues]
        self.schema = schema
        locs = ", ".join(i.get("loc", "<root>") for i in self.issues) or "<root>"
        prefix = f"{schema}: " if schema else ""
        super().__init__(f"{prefix}invalid fields: {locs}")

    @property
    def fields(self) -> list[str]:
        return [i.get("loc", "<root>") for i in self.issues]


class TemplateError(GenflowError, ValueError):
    """Raised when a prompt template is malformed or references unknown variables."""


class TemplateSyntaxError(TemplateError):
    """Raised when a template expression is syntactically invalid."""


class TemplateMissingKeyError(TemplateError):
    """Raised when a template references a variable that is not defined."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"template references undefined variable: {path}")


class FlowDefinitionError(GenflowError, ValueError):
    """Raised when a flow definition is invalid (duplicate name, bad options)."""


class ModelInvocationError(GenflowError, RuntimeError):
    """Base error for generative backend failures."""


class BackendUnavailable(ModelInvocationError):
    """Network or backend failure. Callers may retry; genflow never does."""


class EmptyResponse(ModelInvocationError):
    """The backend answered but returned nothing usable."""


class MalformedResponse(ModelInvocationError):
    """The backend returned output that is not even loosely shaped like the schema."""


class FlowExecutionError(GenflowError, RuntimeError):
    """A flow call failed. `cause` carries the underlying error."""

    def __init__(self, flow_name: str, cause: BaseException | Any):
        self.flow_name = flow_name
        self.cause = cause
        super().__init__(f"flow {flow_name} failed: {type(cause).__name__}: {cause}")


class StoreError(GenflowError, RuntimeError):
    """Base error for document store failures."""


class NotFound(StoreError, LookupError):
    """A store operation referenced a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class StoreUnavailable(StoreError):
    """The document store could not be reached or failed mid-operation."""


class CorruptRecord(StoreError):
    """A stored document no longer satisfies the record schema."""

    def __init__(self, collection: str, doc_id: str, reason: str):
        self.collection = collection
        self.doc_id = doc_id
        self.reason = reason
        super().__init__(f"{collection}/{doc_id} is unreadable: {reason}")


class ConnectorError(GenflowError, RuntimeError):
    """Base error for connector construction and lookup failures."""
