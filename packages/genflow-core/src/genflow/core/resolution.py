"""Strict prompt template rendering.

Allowed tokens ONLY:
- {{PATH}}
- {{PATH:DEFAULT}}
- {{media url=PATH}}

Where:
- PATH = IDENT(.IDENT)*
- Spaces are allowed inside braces (e.g. {{  VAR  }})

Media tokens are not interpolated: the referenced data URI travels next to
the rendered text as a MediaPart and the token is removed.

Everything else fails with TemplateSyntaxError whose message starts with:
"Unsupported templating syntax. Use {{VAR}}, {{VAR:DEFAULT}} or {{media url=VAR}}"
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

from genflow.core.exception import TemplateError, TemplateMissingKeyError, TemplateSyntaxError
from genflow.core.spec import MediaPart

_UNSUPPORTED_MSG = "Unsupported templating syntax. Use {{VAR}}, {{VAR:DEFAULT}} or {{media url=VAR}}"
log = logging.getLogger("genflow.core.resolution")


def _syntax_error(msg: str) -> TemplateSyntaxError:
    return TemplateSyntaxError(_UNSUPPORTED_MSG + "\n" + msg)


def _is_identifier(token: str) -> bool:
    if not token:
        return False
    if not (token[0].isalpha() or token[0] == "_"):
        return False
    for ch in token[1:]:
        if not (ch.isalnum() or ch == "_"):
            return False
    return True


def _is_valid_path(path: str) -> bool:
    parts = path.split(".")
    return all(_is_identifier(p) for p in parts)


def _lookup_path(mapping: Mapping[str, Any], path: str) -> tuple[bool, Any]:
    cur: Any = mapping
    for part in path.split("."):
        if isinstance(cur, Mapping) and part in cur:
            cur = cur[part]
        else:
            return False, None
    return True, cur


def _contains_forbidden_syntax(value: str) -> bool:
    needle = "$" + "{"
    if needle in value:
        return True
    if "{%" in value or "%}" in value:
        return True
    if "{#" in value or "#}" in value:
        return True
    if "{}" in value:
        return True
    return False


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


@dataclass(frozen=True)
class _Text:
    text: str


@dataclass(frozen=True)
class _Var:
    path: str
    default: str | None


@dataclass(frozen=True)
class _Media:
    path: str


_Segment = Union[_Text, _Var, _Media]

_MEDIA_RE = re.compile(r"^media\s+url\s*=\s*(?P<path>\S+)$")


def _parse_token(token: str) -> _Segment:
    m = _MEDIA_RE.match(token)
    if m:
        path = m.group("path")
        if not _is_valid_path(path):
            raise _syntax_error(f"invalid media path: {path}")
        return _Media(path)

    # Split PATH[:DEFAULT] at the first colon.
    if ":" in token:
        path, default = token.split(":", 1)
        path = path.strip()
    else:
        path, default = token.strip(), None

    if not _is_valid_path(path):
        raise _syntax_error(f"invalid variable path: {path!r}")
    return _Var(path, default)


def _parse(value: str) -> list[_Segment]:
    if not isinstance(value, str):
        raise TypeError("templates must be strings")

    if _contains_forbidden_syntax(value):
        raise _syntax_error(f"forbidden syntax in: {value}")

    if "{{" not in value and "}}" not in value:
        return [_Text(value)] if value else []

    segments: list[_Segment] = []
    i = 0
    n = len(value)

    while i < n:
        start = value.find("{{", i)
        if start == -1:
            if "}}" in value[i:]:
                raise _syntax_error(f"unbalanced closing braces in: {value}")
            segments.append(_Text(value[i:]))
            break

        # A closing brace pair before the next opening one is malformed.
        if value.find("}}", i, start) != -1:
            raise _syntax_error(f"unbalanced closing braces in: {value}")

        if start > i:
            segments.append(_Text(value[i:start]))
        end = value.find("}}", start + 2)
        if end == -1:
            raise _syntax_error(f"missing closing braces in: {value}")

        token = value[start + 2 : end].strip()

        # Empty token or nested braces are not allowed.
        if not token or "{" in token or "}" in token:
            raise _syntax_error("empty token or nested braces")
        if value.startswith("}", end + 2):
            raise _syntax_error("triple braces are not supported")

        segments.append(_parse_token(token))
        i = end + 2

    return segments


@dataclass(frozen=True)
class RenderedPrompt:
    text: str
    media: tuple[MediaPart, ...] = ()


def _render(
    segments: Iterable[_Segment],
    variables: Mapping[str, Any],
    *,
    strict: bool,
) -> RenderedPrompt:
    out: list[str] = []
    media: list[MediaPart] = []
    for seg in segments:
        if isinstance(seg, _Text):
            out.append(seg.text)
            continue

        found, resolved = _lookup_path(variables, seg.path)
        missing = not found or resolved is None or resolved == ""

        if isinstance(seg, _Media):
            if missing:
                if strict:
                    raise TemplateMissingKeyError(seg.path)
                continue
            try:
                media.append(MediaPart.from_data_uri(str(resolved)))
            except ValueError as e:
                raise TemplateError(f"media reference {seg.path} is not a data URI") from e
            continue

        if missing:
            if seg.default is not None:
                out.append(seg.default)
            elif strict and not found:
                raise TemplateMissingKeyError(seg.path)
            continue
        out.append(_format_value(resolved))

    return RenderedPrompt(text="".join(out), media=tuple(media))


class CompiledTemplate:
    """A parsed prompt template bound to a known set of variable roots."""

    def __init__(self, source: str, segments: list[_Segment], roots: frozenset[str]):
        self.source = source
        self._segments = segments
        self.roots = roots

    def __repr__(self) -> str:
        return f"CompiledTemplate({self.source[:40]!r})"

    @property
    def variables(self) -> set[str]:
        return {s.path for s in self._segments if isinstance(s, (_Var, _Media))}

    def render(self, variables: Mapping[str, Any]) -> RenderedPrompt:
        # Roots were checked at compile time; unset optionals render as default/empty.
        rendered = _render(self._segments, variables, strict=False)
        return RenderedPrompt(text=rendered.text.strip(), media=rendered.media)


def compile_template(template: str, allowed: Iterable[str] | None = None) -> CompiledTemplate:
    """Parse `template` once and check every referenced root against `allowed`.

    Raises TemplateSyntaxError for malformed tokens and TemplateMissingKeyError
    for variables outside `allowed`.
    """
    segments = _parse(template)
    roots = frozenset(
        s.path.split(".", 1)[0] for s in segments if isinstance(s, (_Var, _Media))
    )
    if allowed is not None:
        allowed_set = set(allowed)
        for seg in segments:
            if isinstance(seg, (_Var, _Media)) and seg.path.split(".", 1)[0] not in allowed_set:
                raise TemplateMissingKeyError(seg.path)
    return CompiledTemplate(template, segments, roots)


_LENIENT_TOKEN_RE = re.compile(
    r"\{\{\s*"
    r"([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)"  # key
    r"(?:\:([^{}]*))?"  # optional :default
    r"\s*\}\}"
)


def render_string(template: str, variables: Mapping[str, Any], *, strict: bool = True) -> str:
    """Render a single string.

    strict=True applies the full template contract and raises on unknown
    variables. strict=False is for caller-supplied prompt text: only
    well-formed {{VAR}} / {{VAR:DEFAULT}} tokens are substituted (unknown ones
    become empty) and any other braces are left as typed.
    """
    if strict:
        return _render(_parse(template), variables, strict=True).text

    def _sub(m: re.Match) -> str:
        found, resolved = _lookup_path(variables, m.group(1))
        if not found or resolved is None or resolved == "":
            return m.group(2) if m.group(2) is not None else ""
        return _format_value(resolved)

    return _LENIENT_TOKEN_RE.sub(_sub, template)


__all__ = [
    "RenderedPrompt",
    "CompiledTemplate",
    "compile_template",
    "render_string",
]
