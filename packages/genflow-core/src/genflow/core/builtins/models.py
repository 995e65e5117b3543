from __future__ import annotations

import logging
from typing import Any, Dict, List

from genflow.core.connectors.base import BaseConnector, _opt
from genflow.core.exception import BackendUnavailable, EmptyResponse, MalformedResponse
from genflow.core.registry.connectors import register_connector
from genflow.core.spec import GenerationConfig, MediaPart, ModelRequest, RawResponse

log = logging.getLogger("genflow.core.builtin.models")


def _strip_provider(model: str) -> str:
    # "googleai/gemini-1.5-flash" -> "gemini-1.5-flash"
    return model.split("/", 1)[1] if "/" in model else model


class _HttpModel(BaseConnector):
    """Shared httpx plumbing for REST model backends.

    Options:
      - timeout: seconds (default 60)
      - transport: an httpx transport (tests use httpx.MockTransport)
    """

    DEFAULT_BASE_URL = ""

    def _timeout(self) -> float:
        return float(_opt(self.options, "timeout", default=60) or 60)

    def base_url(self) -> str:
        return (self.config.get("base_url") or self.DEFAULT_BASE_URL).rstrip("/")

    def api_key(self) -> str | None:
        return self.config.get("api_key") or None

    def headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def model_name(self, request: ModelRequest) -> str:
        return _strip_provider(request.model or self.config.get("default_model") or "")

    async def _post(self, path: str, *, payload: dict, params: dict | None = None) -> Any:
        import httpx

        if not self.api_key():
            raise BackendUnavailable(f"{self.driver}: no API key configured (set GENFLOW_MODEL_API_KEY)")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url(),
                headers=self.headers(),
                timeout=self._timeout(),
                transport=self.options.get("transport"),
            ) as client:
                resp = await client.post(path, json=payload, params=params)
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"{self.driver} request failed: {type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            body = resp.text[:500]
            raise BackendUnavailable(f"{self.driver} returned HTTP {resp.status_code}: {body}")
        try:
            return resp.json()
        except ValueError as e:
            raise MalformedResponse(f"{self.driver} returned a non-JSON body") from e


@register_connector("model", "gemini")
class GeminiModel(_HttpModel):
    """Google Generative Language API (generateContent).

    Config:
      - api_key: sent as ?key=
      - base_url: default https://generativelanguage.googleapis.com
      - default_model: used when a request names no model
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"

    def build_payload(self, request: ModelRequest) -> dict:
        parts: List[dict] = [{"text": request.prompt}]
        for m in request.media:
            parts.append({"inline_data": {"mime_type": m.content_type, "data": m.data}})

        cfg = request.config or GenerationConfig()
        gen: Dict[str, Any] = {}
        if cfg.temperature is not None:
            gen["temperature"] = cfg.temperature
        if cfg.max_output_tokens is not None:
            gen["maxOutputTokens"] = cfg.max_output_tokens
        if cfg.wants_image():
            gen["responseModalities"] = list(cfg.response_modalities)
        elif request.json_schema is not None:
            gen["responseMimeType"] = "application/json"

        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if gen:
            payload["generationConfig"] = gen
        return payload

    def parse_response(self, body: Any, *, model: str, want_image: bool) -> RawResponse:
        if not isinstance(body, dict):
            raise MalformedResponse("gemini response is not a JSON object")
        candidates = body.get("candidates") or []
        if not candidates:
            reason = (body.get("promptFeedback") or {}).get("blockReason")
            raise EmptyResponse(f"gemini returned no candidates{f' (blocked: {reason})' if reason else ''}")

        parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
        texts: List[str] = []
        media: MediaPart | None = None
        for p in parts:
            if not isinstance(p, dict):
                continue
            inline = p.get("inlineData") or p.get("inline_data")
            if inline and media is None:
                media = MediaPart(
                    content_type=inline.get("mimeType") or inline.get("mime_type") or "application/octet-stream",
                    data=inline.get("data") or "",
                )
            elif isinstance(p.get("text"), str):
                texts.append(p["text"])

        if want_image and media is not None:
            return RawResponse(model=model, media=media)
        return RawResponse(model=model, text="".join(texts) or None, media=media)

    async def generate(self, request: ModelRequest) -> RawResponse:
        model = self.model_name(request)
        params = {"key": self.api_key()} if self.api_key() else None
        body = await self._post(f"/v1beta/models/{model}:generateContent", payload=self.build_payload(request), params=params)
        want_image = bool(request.config and request.config.wants_image())
        return self.parse_response(body, model=model, want_image=want_image)


@register_connector("model", "openai")
class OpenAICompatibleModel(_HttpModel):
    """OpenAI-compatible /chat/completions backend.

    Config:
      - api_key: sent as a bearer token
      - base_url: default https://api.openai.com/v1
    """

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def headers(self) -> dict:
        h = super().headers()
        if self.api_key():
            h["Authorization"] = f"Bearer {self.api_key()}"
        return h

    def build_payload(self, request: ModelRequest) -> dict:
        if request.media:
            content: Any = [{"type": "text", "text": request.prompt}]
            for m in request.media:
                content.append({"type": "image_url", "image_url": {"url": m.url}})
        else:
            content = request.prompt

        payload: Dict[str, Any] = {
            "model": self.model_name(request),
            "messages": [{"role": "user", "content": content}],
        }
        cfg = request.config or GenerationConfig()
        if cfg.temperature is not None:
            payload["temperature"] = cfg.temperature
        if cfg.max_output_tokens is not None:
            payload["max_tokens"] = cfg.max_output_tokens
        if request.json_schema is not None:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def parse_response(self, body: Any, *, model: str) -> RawResponse:
        if not isinstance(body, dict):
            raise MalformedResponse(f"{self.driver} response is not a JSON object")
        choices = body.get("choices") or []
        if not choices:
            raise EmptyResponse(f"{self.driver} returned no choices")
        message = (choices[0] or {}).get("message") or {}
        text = message.get("content")
        if isinstance(text, list):
            text = "".join(str(p.get("text", "")) for p in text if isinstance(p, dict))
        return RawResponse(model=body.get("model") or model, text=text or None)

    async def generate(self, request: ModelRequest) -> RawResponse:
        model = self.model_name(request)
        body = await self._post("/chat/completions", payload=self.build_payload(request))
        return self.parse_response(body, model=model)


@register_connector("model", "deepseek")
class DeepSeekModel(OpenAICompatibleModel):
    DEFAULT_BASE_URL = "https://api.deepseek.com/v1"

