from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from importlib import import_module
from typing import Any

from genflow.core.runtime.settings import Settings

log = logging.getLogger("genflow.core.observability")

FLOW_SUCCESS = "SUCCESS"
FLOW_FAILED = "FAILED"
FLOW_STUBBED = "STUBBED"


class MetricsSink:
    """Optional metrics sink.

    Users can provide a module via GENFLOW_METRICS_MODULE exposing METRICS: MetricsSink.
    It gives production users a stable hook point without a dependency on any
    metrics stack.
    """

    def on_flow_start(self, *, flow: str, invocation_id: str) -> None:  # pragma: no cover
        return None

    def on_flow_end(self, *, flow: str, invocation_id: str, status: str, duration_ms: int) -> None:  # pragma: no cover
        return None


def load_metrics_sink(settings: Settings) -> MetricsSink:
    mod = settings.metrics_module
    if not mod:
        return MetricsSink()
    m = import_module(mod)
    sink = getattr(m, "METRICS", None)
    if sink is None:
        raise AttributeError(f"{mod} must expose METRICS")
    return sink


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dur_ms(t0: float, t1: float) -> int:
    return int((t1 - t0) * 1000)


def log_event(logger: logging.Logger, *, settings: Settings, level: int, event: str, **fields: Any) -> None:
    """Emit an event log.

    - text format: one-liner `event key=value ...`
    - json format: one JSON object per line
    """
    if settings.log_format.lower() == "json":
        payload = {"ts_ms": _now_ms(), "event": event, **fields}
        logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
        return

    # text
    parts = [event]
    for k, v in fields.items():
        parts.append(f"{k}={v}")
    logger.log(level, " ".join(parts))


@dataclass
class FlowSummary:
    flow: str
    invocation_id: str
    status: str
    duration_ms: int
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "flow": self.flow,
            "invocation_id": self.invocation_id,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


class FlowObserver:
    """Times one flow invocation and emits flow_start/flow_end events."""

    def __init__(self, *, settings: Settings, logger: logging.Logger, flow: str, invocation_id: str):
        self.settings = settings
        self.logger = logger
        self.flow = flow
        self.invocation_id = invocation_id
        self._t0: float | None = None
        self.metrics = load_metrics_sink(settings)

    def flow_start(self, **fields: Any) -> None:
        self._t0 = time.perf_counter()
        log_event(self.logger, settings=self.settings, level=logging.INFO, event="flow_start", flow=self.flow, invocation_id=self.invocation_id, **fields)
        try:
            self.metrics.on_flow_start(flow=self.flow, invocation_id=self.invocation_id)
        except Exception:
            # Metrics must never break the call.
            log.warning("FlowObserver.flow_start metrics hook failed", exc_info=True)

    def flow_end(self, *, status: str, error: BaseException | None = None) -> FlowSummary:
        dur = _dur_ms(self._t0, time.perf_counter()) if self._t0 is not None else 0
        summary = FlowSummary(
            flow=self.flow,
            invocation_id=self.invocation_id,
            status=status,
            duration_ms=dur,
            error=f"{type(error).__name__}: {error}" if error is not None else None,
        )
        level = logging.ERROR if status == FLOW_FAILED else logging.INFO
        log_event(self.logger, settings=self.settings, level=level, event="flow_end", **summary.as_dict())
        try:
            self.metrics.on_flow_end(flow=self.flow, invocation_id=self.invocation_id, status=status, duration_ms=dur)
        except Exception:
            log.warning("FlowObserver.flow_end metrics hook failed", exc_info=True)
        return summary
