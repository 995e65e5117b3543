from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Optional

from genflow.core.connectors.manager import Backends
from genflow.core.exception import EmptyResponse
from genflow.core.runtime.settings import Settings, load_settings
from genflow.core.spec import GenerationConfig, MediaPart, ModelRequest, RawResponse

log = logging.getLogger("genflow.core.invoker")


def extract_json(text: str) -> Any:
    """Parse model text as JSON, tolerating a ```json fenced block around it."""
    raw = (text or "").strip()
    if raw.startswith("```"):
        raw = raw[3:]
        if raw[:4].lower() == "json":
            raw = raw[4:]
        end = raw.rfind("```")
        if end != -1:
            raw = raw[:end]
        raw = raw.strip()
    return json.loads(raw)


async def invoke(
    prompt: str,
    *,
    media: Iterable[MediaPart] = (),
    model: Optional[str] = None,
    config: Optional[GenerationConfig] = None,
    json_schema: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
    backends: Optional[Backends] = None,
) -> RawResponse:
    """Send one prompt to the configured model backend.

    When `json_schema` is given, a text answer that parses as JSON is returned
    as `data`; otherwise the text is left for the caller to interpret.

    Raises BackendUnavailable, EmptyResponse or MalformedResponse. Never retries.
    """
    settings = settings or load_settings()
    backends = backends or Backends(settings)
    backend = backends.model()

    request = ModelRequest(
        prompt=prompt,
        model=model or settings.default_model,
        media=tuple(media or ()),
        config=config,
        json_schema=json_schema,
    )
    log.debug("invoke driver=%s model=%s media=%d json=%s", settings.model_driver, request.model, len(request.media), json_schema is not None)
    raw = await backend.generate(request)

    if raw is None or raw.is_empty():
        raise EmptyResponse(f"model {request.model} returned an empty response")

    if json_schema is not None and raw.data is None and raw.media is None and raw.text:
        try:
            data = extract_json(raw.text)
        except ValueError:
            return raw
        return RawResponse(model=raw.model, text=raw.text, data=data)
    return raw
