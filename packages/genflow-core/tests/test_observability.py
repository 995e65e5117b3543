from __future__ import annotations

import json
import textwrap

import pytest

from genflow.core.engine import define_flow
from genflow.core.exception import FlowExecutionError
from genflow.core.observability import FLOW_FAILED, FLOW_STUBBED, FLOW_SUCCESS
from genflow.core.registry.flows import FlowRegistry
from genflow.core.spec import WireModel


class In(WireModel):
    text: str


class Out(WireModel):
    answer: str


def _events(caplog, name):
    out = []
    for rec in caplog.records:
        try:
            data = json.loads(rec.getMessage())
        except ValueError:
            continue
        if data.get("event") == name:
            out.append(data)
    return out


def test_flow_events_in_json_logs(settings, backends, model, caplog: pytest.LogCaptureFixture):
    f = define_flow("obs", In, Out, prompt="{{text}}", registry=FlowRegistry())
    json_settings = settings.model_copy(update={"log_format": "json"})
    caplog.set_level("INFO")

    model.reply(data={"answer": "a"})
    f.run_sync({"text": "q"}, settings=json_settings, backends=backends)
    with pytest.raises(FlowExecutionError):
        f.run_sync({"text": "q"}, settings=json_settings, backends=backends)  # no reply left
    f.run_sync({"text": "q"}, settings=json_settings.model_copy(update={"model_driver": "stub"}), backends=backends)

    starts = _events(caplog, "flow_start")
    ends = _events(caplog, "flow_end")
    assert [s["flow"] for s in starts] == ["obs"] * 3
    assert [e["status"] for e in ends] == [FLOW_SUCCESS, FLOW_FAILED, FLOW_STUBBED]
    assert all(isinstance(e["duration_ms"], int) and e["invocation_id"] for e in ends)
    assert ends[1]["error"].startswith("BackendUnavailable")
    assert len({e["invocation_id"] for e in ends}) == 3


def test_text_log_format(settings, backends, caplog):
    f = define_flow("obs_text", In, Out, prompt="{{text}}", stub={"answer": "x"}, registry=FlowRegistry())
    caplog.set_level("INFO")
    f.run_sync({"text": "q"}, settings=settings.model_copy(update={"model_driver": "stub"}), backends=backends)
    msgs = [r.getMessage() for r in caplog.records if r.name == "genflow.flow.obs_text"]
    assert any(m.startswith("flow_end ") and "status=STUBBED" in m for m in msgs)


def test_metrics_sink_module_and_failures_are_contained(settings, backends, tmp_path, monkeypatch):
    (tmp_path / "my_metrics.py").write_text(
        textwrap.dedent(
            """
            EVENTS = []

            class Sink:
                def on_flow_start(self, *, flow, invocation_id):
                    EVENTS.append(("start", flow))

                def on_flow_end(self, *, flow, invocation_id, status, duration_ms):
                    EVENTS.append(("end", flow, status))
                    raise RuntimeError("metrics backend down")

            METRICS = Sink()
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    import my_metrics

    f = define_flow("metered", In, Out, prompt="{{text}}", stub={"answer": "x"}, registry=FlowRegistry())
    s = settings.model_copy(update={"model_driver": "stub", "metrics_module": "my_metrics"})

    assert f.run_sync({"text": "q"}, settings=s, backends=backends).answer == "x"
    assert my_metrics.EVENTS == [("start", "metered"), ("end", "metered", FLOW_STUBBED)]
