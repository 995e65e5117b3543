from __future__ import annotations

import json
import sys
import types

import pytest

from genflow.core.plugins import load_all_plugins, load_plugins_from_modules
from genflow.core.registry.flows import REGISTRY
from genflow.core.runtime.envfiles import build_env_snapshot, load_env_files, parse_env_files_json
from genflow.core.runtime.settings import Settings, load_settings


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.model_driver == "gemini"
    assert s.default_model == "gemini-1.5-flash"
    assert s.store_driver == "memory"
    assert s.connector_cache_default == "process"
    assert s.stub_flows == [] and s.plugin_strict is True


def test_env_values_and_overrides():
    s = load_settings(
        {"log_format": "json"},
        env={
            "GENFLOW_MODEL_DRIVER": " OpenAI ",
            "GEMINI_API_KEY": "g-key",
            "GENFLOW_STUB_FLOWS": "create_reminder, requirements_navigator",
            "GENFLOW_MODEL_TIMEOUT": "5",
            "GENFLOW_PLUGIN_STRICT": "0",
        },
    )
    assert s.model_driver == "openai"
    assert s.model_api_key == "g-key"
    assert s.model_timeout == 5.0
    assert s.is_stubbed("create_reminder") and not s.is_stubbed("scenario_architect")
    assert s.plugin_strict is False
    assert s.log_format == "json"


def test_generic_api_key_wins_over_gemini_key():
    s = Settings.from_env({"GENFLOW_MODEL_API_KEY": "generic", "GEMINI_API_KEY": "g"})
    assert s.model_api_key == "generic"


def test_settings_module(monkeypatch):
    mod = types.ModuleType("my_genflow_settings")
    mod.SETTINGS = {"store_driver": "sqlite3", "store_url": "sqlite:///:memory:"}
    monkeypatch.setitem(sys.modules, "my_genflow_settings", mod)
    s = load_settings(env={"GENFLOW_SETTINGS_MODULE": "my_genflow_settings"})
    assert s.store_driver == "sqlite3"


def test_dotenv_fills_only_missing_keys(tmp_path):
    (tmp_path / ".env").write_text("GENFLOW_STORE_DRIVER=noop\nexport GENFLOW_LOG_LEVEL='DEBUG'\n", encoding="utf-8")
    env = build_env_snapshot({"GENFLOW_LOG_LEVEL": "WARNING"}, cwd=tmp_path)
    assert env["GENFLOW_STORE_DRIVER"] == "noop"
    assert env["GENFLOW_LOG_LEVEL"] == "WARNING"


def test_env_files_json_overrides(tmp_path):
    (tmp_path / "secrets").mkdir()
    (tmp_path / "secrets" / "GENFLOW_MODEL_API_KEY").write_text("from-dir\n", encoding="utf-8")
    (tmp_path / "extra.json").write_text(json.dumps({"GENFLOW_DEFAULT_MODEL": "gemini-1.5-pro"}), encoding="utf-8")
    specs = json.dumps(
        [
            {"type": "dir", "path": str(tmp_path / "secrets")},
            {"type": "json", "path": str(tmp_path / "extra.json")},
            {"type": "dotenv", "path": str(tmp_path / "missing.env"), "optional": True},
        ]
    )
    env = build_env_snapshot({"GENFLOW_ENV_FILES_JSON": specs, "GENFLOW_DEFAULT_MODEL": "x", "GENFLOW_DOTENV": ""})
    s = Settings.from_env(env)
    assert s.model_api_key == "from-dir"
    assert s.default_model == "gemini-1.5-pro"


def test_env_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_env_files(parse_env_files_json(json.dumps([{"type": "dotenv", "path": str(tmp_path / "nope")}])))
    with pytest.raises(TypeError):
        parse_env_files_json('{"type": "dotenv"}')


def test_flow_modules_register_flows(tmp_path, monkeypatch):
    (tmp_path / "extra_flows.py").write_text(
        "from genflow.core.api import WireModel, define_flow\n"
        "class I(WireModel):\n    q: str\n"
        "class O(WireModel):\n    a: str\n"
        "define_flow('extra_echo', I, O, prompt='{{q}}')\n",
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    try:
        load_all_plugins(settings=Settings(flow_modules=["extra_flows"]))
        assert "extra_echo" in REGISTRY
    finally:
        REGISTRY.unregister("extra_echo")
        sys.modules.pop("extra_flows", None)


def test_missing_flow_module_strictness():
    with pytest.raises(RuntimeError):
        load_plugins_from_modules(["no_such_module_xyz"], strict=True)
    load_plugins_from_modules(["no_such_module_xyz"], strict=False)
