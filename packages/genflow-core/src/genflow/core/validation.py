from __future__ import annotations

import logging
import types
import typing
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Literal, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, RootModel, ValidationError

from genflow.core.exception import SchemaValidationError
from genflow.core.spec import SavePromptInput, _check_data_uri

log = logging.getLogger("genflow.core.validation")

M = TypeVar("M", bound=BaseModel)

# 1x1 transparent PNG, used wherever a placeholder must be a valid data URI.
PLACEHOLDER_DATA_URI = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    loc: str
    msg: str

    def as_dict(self) -> dict:
        return {"code": self.code, "loc": self.loc, "msg": self.msg}


def _fmt_loc(loc: Any) -> str:
    """Format a pydantic 'loc' tuple/list into a readable dotted path."""
    if not loc:
        return "<root>"
    parts: List[str] = []
    for x in loc:
        if isinstance(x, int):
            # list index
            if not parts:
                parts.append(f"[{x}]")
            else:
                parts[-1] = f"{parts[-1]}[{x}]"
        else:
            parts.append(str(x))
    return ".".join(parts)


def _collect_pydantic_issues(err: ValidationError) -> List[ValidationIssue]:
    out: List[ValidationIssue] = []
    for e in err.errors():
        loc = _fmt_loc(e.get("loc"))
        msg = e.get("msg") or "Invalid value"
        etype = e.get("type") or "schema_error"
        out.append(ValidationIssue(code=f"schema:{etype}", loc=loc, msg=msg))
    return out


def _validate(schema: Type[M], value: Any) -> M:
    if isinstance(value, schema):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True)
    try:
        return schema.model_validate(value)
    except ValidationError as e:
        issues = [x.as_dict() for x in _collect_pydantic_issues(e)]
        raise SchemaValidationError(issues, schema=schema.__name__) from e


def validate_input(schema: Type[M], value: Any) -> M:
    """Validate a caller-supplied value against a flow input schema."""
    return _validate(schema, value)


def coerce_output(schema: Type[M], value: Any) -> M:
    """Validate a produced value against a flow output schema.

    Raises SchemaValidationError; the flow engine reports it as a flow failure.
    """
    return _validate(schema, value)


def template_variables(schema: Type[BaseModel]) -> set[str]:
    """Names a prompt template may reference for inputs of `schema` (wire names)."""
    if issubclass(schema, RootModel):
        return set()
    return {f.alias or name for name, f in schema.model_fields.items()}


# ---------------------------------------------------------------------------
# Placeholders for stubbed flows
# ---------------------------------------------------------------------------

_NONE_TYPE = type(None)


def _is_data_uri_field(metadata: list) -> bool:
    return any(getattr(m, "func", None) is _check_data_uri for m in metadata)


def _lower_bound(metadata: list) -> Any:
    for m in metadata:
        for attr in ("ge", "gt"):
            bound = getattr(m, attr, None)
            if bound is not None:
                return bound
    return None


def _placeholder_value(annotation: Any, metadata: list) -> Any:
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin is typing.Annotated:
        return _placeholder_value(args[0], list(metadata) + list(getattr(annotation, "__metadata__", ())))
    if origin in (Union, types.UnionType):
        if _NONE_TYPE in args:
            return None
        return _placeholder_value(args[0], metadata)
    if origin is Literal:
        return args[0]
    if origin in (list, tuple, set, frozenset):
        return []
    if origin is dict:
        return {}

    if isinstance(annotation, type):
        if issubclass(annotation, BaseModel):
            return placeholder_for(annotation).model_dump(by_alias=True)
        if issubclass(annotation, bool):
            return False
        if issubclass(annotation, (int, float)):
            bound = _lower_bound(metadata)
            return annotation(bound) if bound is not None else annotation(0)
        if issubclass(annotation, str):
            return PLACEHOLDER_DATA_URI if _is_data_uri_field(metadata) else ""
    return None


def placeholder_for(schema: Type[M]) -> M:
    """Build the fixed, schema-valid placeholder value for `schema`.

    Declared defaults win; otherwise empty strings, lower bounds (or zero),
    False, empty collections, the first literal, None for optionals.
    """
    if issubclass(schema, RootModel):
        return schema.model_validate([])
    data: dict[str, Any] = {}
    for name, field in schema.model_fields.items():
        if not field.is_required():
            continue
        data[name] = _placeholder_value(field.annotation, list(field.metadata))
    return schema.model_validate(data)


# ---------------------------------------------------------------------------
# Seed files
# ---------------------------------------------------------------------------


def validate_prompt_records(raw: Any) -> dict:
    """Validate a seed document.

    Accepts either a list of prompt records or {"prompts": [...]}.
    Returns a report dict: {ok: bool, errors: [{code, loc, msg}...], records: [...]}
    """
    issues: List[ValidationIssue] = []
    records: List[SavePromptInput] = []

    items = raw.get("prompts") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        issues.append(ValidationIssue(code="seed:not_a_list", loc="prompts", msg="Expected a list of prompt records"))
        return {"ok": False, "errors": [x.as_dict() for x in issues], "records": []}

    for idx, item in enumerate(items):
        try:
            records.append(SavePromptInput.model_validate(item))
        except ValidationError as e:
            for iss in _collect_pydantic_issues(e):
                loc = f"prompts[{idx}]" if iss.loc == "<root>" else f"prompts[{idx}].{iss.loc}"
                issues.append(ValidationIssue(code=iss.code, loc=loc, msg=iss.msg))

    ids = [r.id for r in records if r.id]
    for dup in sorted({i for i in ids if ids.count(i) > 1}):
        issues.append(ValidationIssue(code="semantic:duplicate_prompt_id", loc="prompts", msg=f"Duplicate prompt id: {dup}"))

    return {
        "ok": len(issues) == 0,
        "errors": [x.as_dict() for x in issues],
        "records": records if not issues else [],
    }


def validate_prompt_records_yaml(path: str) -> dict:
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []
    report = validate_prompt_records(raw)
    report["seed_yaml"] = str(p)
    if not report["ok"]:
        log.warning("seed file %s has %d error(s)", p, len(report["errors"]))
    return report


__all__ = [
    "ValidationIssue",
    "PLACEHOLDER_DATA_URI",
    "validate_input",
    "coerce_output",
    "template_variables",
    "placeholder_for",
    "validate_prompt_records",
    "validate_prompt_records_yaml",
]
