from __future__ import annotations

import datetime as _dt
import functools
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Mapping, Optional

import anyio

from genflow.core.connectors.manager import Backends
from genflow.core.invoker import invoke
from genflow.core.resolution import render_string
from genflow.core.runtime.settings import Settings
from genflow.core.spec import GenerationConfig, MediaPart, RawResponse
from genflow.core.store import PromptStore

if TYPE_CHECKING:
    from genflow.core.engine import FlowDefinition


@dataclass
class FlowContext:
    """One flow invocation, as seen by a custom flow body."""

    flow: "FlowDefinition"
    invocation_id: str
    settings: Settings
    backends: Backends
    started_at: _dt.datetime = field(default_factory=lambda: _dt.datetime.now(_dt.timezone.utc))
    log: logging.Logger = field(default_factory=lambda: logging.getLogger("genflow.core.context"))
    _prompts: Optional[PromptStore] = field(default=None, init=False, repr=False)

    @property
    def prompts(self) -> PromptStore:
        if self._prompts is None:
            self._prompts = PromptStore(self.backends.store)
        return self._prompts

    async def generate(
        self,
        prompt: str,
        *,
        media: Iterable[MediaPart] = (),
        model: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> RawResponse:
        return await invoke(
            prompt,
            media=media,
            model=model or self.flow.model,
            config=config or self.flow.config,
            json_schema=json_schema,
            settings=self.settings,
            backends=self.backends,
        )

    def render(self, template: str, variables: Mapping[str, Any], *, strict: bool = True) -> str:
        return render_string(template, variables, strict=strict)

    async def run_sync(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run blocking code (store calls) in a worker thread."""
        return await anyio.to_thread.run_sync(functools.partial(fn, *args, **kwargs))

    async def call(self, flow_name: str, value: Any) -> Any:
        """Call another registered flow with this invocation's settings and backends."""
        from genflow.core.registry.flows import get_flow

        return await get_flow(flow_name)(value, settings=self.settings, backends=self.backends)


def new_invocation_id() -> str:
    return uuid.uuid4().hex[:12]
