from pathlib import Path

import sys

# Allow running tests without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

import genflow.core  # noqa: F401  (registers built-in flows/connectors)
from genflow.core.connectors.base import BaseConnector
from genflow.core.connectors.manager import Backends, reset_process_cache
from genflow.core.exception import BackendUnavailable
from genflow.core.registry.connectors import REGISTRY as CONNECTORS
from genflow.core.runtime.settings import Settings
from genflow.core.spec import RawResponse


class ScriptedModel:
    """Replies queued by a test, plus every request the flows sent."""

    def __init__(self) -> None:
        self.requests = []
        self.replies = []

    def reply(self, **kwargs) -> "ScriptedModel":
        self.replies.append(RawResponse(model=kwargs.pop("model", "fake-model"), **kwargs))
        return self

    def fail(self, exc: BaseException) -> "ScriptedModel":
        self.replies.append(exc)
        return self


@pytest.fixture(autouse=True)
def _fresh_connectors():
    reset_process_cache()
    yield
    reset_process_cache()


@pytest.fixture()
def settings():
    return Settings(
        model_driver="fake",
        model_api_key="test-key",
        store_driver="memory",
        connector_cache_default="run",
        plugin_strict=True,
        log_level="INFO",
    )


@pytest.fixture()
def backends(settings):
    b = Backends(settings)
    try:
        yield b
    finally:
        b.close_all()


@pytest.fixture()
def model():
    scripted = ScriptedModel()

    class _FakeModel(BaseConnector):
        async def generate(self, request):
            scripted.requests.append(request)
            if not scripted.replies:
                raise BackendUnavailable("no scripted reply left")
            r = scripted.replies.pop(0)
            if isinstance(r, BaseException):
                raise r
            return r

    CONNECTORS.register("model", "fake")(_FakeModel)
    try:
        yield scripted
    finally:
        CONNECTORS.unregister("model", "fake")
