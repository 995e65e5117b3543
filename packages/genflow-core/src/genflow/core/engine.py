"""Flow definition and execution.

A flow is a named, schema-checked async callable:

    summarize = define_flow(
        "summarize",
        SummarizeInput,
        SummarizeOutput,
        prompt="Summarize in one sentence: {{text}}",
    )
    result = await summarize({"text": "..."})

Execution order per call: validate input -> stub | custom body | render +
invoke -> coerce output. Input validation and template errors surface as
they are; backend and store failures surface as FlowExecutionError.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Optional, Type, Union

import anyio
from pydantic import BaseModel, RootModel

from genflow.core.connectors.manager import Backends
from genflow.core.context import FlowContext, new_invocation_id
from genflow.core.exception import (
    ConnectorError,
    FlowDefinitionError,
    FlowExecutionError,
    MalformedResponse,
    ModelInvocationError,
    SchemaValidationError,
    StoreError,
)
from genflow.core.invoker import extract_json
from genflow.core.observability import FLOW_FAILED, FLOW_STUBBED, FLOW_SUCCESS, FlowObserver
from genflow.core.registry.flows import REGISTRY, FlowRegistry
from genflow.core.resolution import CompiledTemplate, compile_template
from genflow.core.runtime.settings import Settings, load_settings
from genflow.core.spec import GenerationConfig, RawResponse
from genflow.core.validation import coerce_output, placeholder_for, template_variables, validate_input

log = logging.getLogger("genflow.core.engine")

FlowKind = Literal["generative", "record"]
Body = Callable[[FlowContext, Any], Any]
Stub = Union[Mapping[str, Any], BaseModel, Callable[[Any], Any]]

# Failures a flow reports as FlowExecutionError.
_TRANSLATED = (ModelInvocationError, StoreError, ConnectorError, SchemaValidationError)


@dataclass(frozen=True)
class FlowDefinition:
    name: str
    input_schema: Type[BaseModel]
    output_schema: Type[BaseModel]
    prompt: Optional[CompiledTemplate] = None
    model: Optional[str] = None
    config: Optional[GenerationConfig] = None
    body: Optional[Body] = None
    stub: Optional[Stub] = None
    kind: FlowKind = "generative"
    description: str = ""


def _single_str_field(schema: Type[BaseModel]) -> Optional[str]:
    if issubclass(schema, RootModel):
        return None
    required = [(name, f) for name, f in schema.model_fields.items() if f.is_required()]
    if len(required) == 1 and required[0][1].annotation is str:
        name, f = required[0]
        return f.alias or name
    return None


def raw_to_value(raw: RawResponse, schema: Type[BaseModel]) -> Any:
    """Turn a backend answer into a candidate value for `schema`.

    JSON objects pass through. Free text or media land in the schema's only
    string field when it has exactly one; anything else is MalformedResponse.
    """
    if raw.data is not None:
        if isinstance(raw.data, dict) or issubclass(schema, RootModel):
            return raw.data
        raise MalformedResponse(f"expected a JSON object, got {type(raw.data).__name__}")

    target = _single_str_field(schema)
    if raw.media is not None:
        if target is None:
            raise MalformedResponse("model returned media but the output schema has no single string field")
        return {target: raw.media.url}

    text = raw.text or ""
    try:
        data = extract_json(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data
    if target is not None:
        return {target: text.strip()}
    raise MalformedResponse("model output is not a JSON object")


class Flow:
    """Callable handle for a registered FlowDefinition."""

    def __init__(self, definition: FlowDefinition):
        self.definition = definition
        self.log = logging.getLogger(f"genflow.flow.{definition.name}")

    def __repr__(self) -> str:
        return f"<Flow {self.name} kind={self.definition.kind}>"

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def input_schema(self) -> Type[BaseModel]:
        return self.definition.input_schema

    @property
    def output_schema(self) -> Type[BaseModel]:
        return self.definition.output_schema

    def is_stubbed(self, settings: Settings) -> bool:
        return self.definition.kind == "generative" and settings.is_stubbed(self.name)

    def _stub_value(self, value: BaseModel) -> Any:
        stub = self.definition.stub
        if stub is None:
            return placeholder_for(self.output_schema)
        if callable(stub) and not isinstance(stub, BaseModel):
            return stub(value)
        return stub

    async def _produce(self, ctx: FlowContext, value: BaseModel) -> Any:
        d = self.definition
        if d.body is not None:
            if inspect.iscoroutinefunction(d.body):
                return await d.body(ctx, value)
            return await ctx.run_sync(d.body, ctx, value)

        rendered = d.prompt.render(value.model_dump(by_alias=True, mode="json"))  # type: ignore[union-attr]
        return await ctx.generate(
            rendered.text,
            media=rendered.media,
            json_schema=self.output_schema.model_json_schema(by_alias=True),
        )

    async def __call__(
        self,
        value: Any,
        *,
        settings: Optional[Settings] = None,
        backends: Optional[Backends] = None,
    ) -> Any:
        # Invalid input never reaches a backend.
        parsed = validate_input(self.input_schema, value)

        settings = settings or (backends.settings if backends is not None else load_settings())
        owned = backends is None
        backends = backends or Backends(settings)
        ctx = FlowContext(
            flow=self.definition,
            invocation_id=new_invocation_id(),
            settings=settings,
            backends=backends,
            log=self.log,
        )
        obs = FlowObserver(settings=settings, logger=self.log, flow=self.name, invocation_id=ctx.invocation_id)
        obs.flow_start(kind=self.definition.kind)

        status = FLOW_FAILED
        error: BaseException | None = None
        try:
            if self.is_stubbed(settings):
                produced = self._stub_value(parsed)
                status = FLOW_STUBBED
            else:
                produced = await self._produce(ctx, parsed)
                status = FLOW_SUCCESS

            if isinstance(produced, RawResponse):
                produced = raw_to_value(produced, self.output_schema)
            return coerce_output(self.output_schema, produced)
        except FlowExecutionError as e:
            status, error = FLOW_FAILED, e
            raise
        except _TRANSLATED as e:
            status, error = FLOW_FAILED, e
            raise FlowExecutionError(self.name, e) from e
        except BaseException as e:
            status, error = FLOW_FAILED, e
            raise
        finally:
            obs.flow_end(status=status, error=error)
            if owned:
                backends.close_all()

    def run_sync(self, value: Any, *, settings: Optional[Settings] = None, backends: Optional[Backends] = None) -> Any:
        """Run the flow from synchronous code."""
        return anyio.run(self._call_kw, value, settings, backends)

    async def _call_kw(self, value: Any, settings: Optional[Settings], backends: Optional[Backends]) -> Any:
        return await self(value, settings=settings, backends=backends)

    def describe(self) -> dict:
        d = self.definition
        return {
            "name": d.name,
            "kind": d.kind,
            "description": d.description,
            "model": d.model,
            "input": d.input_schema.__name__,
            "output": d.output_schema.__name__,
            "prompt_variables": sorted(d.prompt.variables) if d.prompt else [],
        }


def define_flow(
    name: str,
    input_schema: Type[BaseModel],
    output_schema: Type[BaseModel],
    body: Optional[Body] = None,
    *,
    prompt: Optional[str] = None,
    model: Optional[str] = None,
    config: Optional[GenerationConfig] = None,
    stub: Optional[Stub] = None,
    kind: Optional[FlowKind] = None,
    description: str = "",
    registry: Optional[FlowRegistry] = REGISTRY,
) -> Flow:
    """Build, check and register a flow.

    Raises TemplateError for a malformed prompt or one naming a variable the
    input schema does not declare, and FlowDefinitionError for a duplicate
    name or an incomplete definition. Pass registry=None for an unregistered flow.
    """
    if not name or not isinstance(name, str):
        raise FlowDefinitionError("flow name must be a non-empty string")
    for label, schema in (("input", input_schema), ("output", output_schema)):
        if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
            raise FlowDefinitionError(f"flow {name}: {label} schema must be a pydantic model class")
    if body is None and prompt is None:
        raise FlowDefinitionError(f"flow {name}: either a prompt template or a body is required")
    if body is not None and prompt is not None:
        raise FlowDefinitionError(f"flow {name}: a prompt template and a body are mutually exclusive")
    if body is not None and not callable(body):
        raise FlowDefinitionError(f"flow {name}: body must be callable")

    compiled = compile_template(prompt, template_variables(input_schema)) if prompt is not None else None
    resolved_kind: FlowKind = kind or "generative"
    if resolved_kind not in ("generative", "record"):
        raise FlowDefinitionError(f"flow {name}: unknown kind {resolved_kind!r}")

    definition = FlowDefinition(
        name=name,
        input_schema=input_schema,
        output_schema=output_schema,
        prompt=compiled,
        model=model,
        config=config,
        body=body,
        stub=stub,
        kind=resolved_kind,
        description=description or ((inspect.getdoc(body) or "") if body is not None else ""),
    )
    f = Flow(definition)
    if registry is not None:
        registry.register(f)
    return f


def flow(
    name: str,
    input_schema: Type[BaseModel],
    output_schema: Type[BaseModel],
    **options: Any,
) -> Callable[[Body], Flow]:
    """Decorator form of define_flow for flows with a custom body."""

    def deco(body: Body) -> Flow:
        return define_flow(name, input_schema, output_schema, body, **options)

    return deco
