from __future__ import annotations

import json

import pytest

from genflow.core.cli import main


@pytest.fixture()
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("GENFLOW_MODEL_API_KEY", "GEMINI_API_KEY", "GENFLOW_ENV_FILES_JSON", "GENFLOW_SETTINGS_MODULE", "GENFLOW_STUB_FLOWS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GENFLOW_MODEL_DRIVER", "stub")
    monkeypatch.setenv("GENFLOW_STORE_DRIVER", "sqlite3")
    monkeypatch.setenv("GENFLOW_STORE_URL", f"sqlite:///{tmp_path / 'prompts.sqlite'}")
    return tmp_path


def test_cli_flows_json(cli_env, capsys):
    rc = main(["flows", "--json"])
    flows = {f["name"]: f for f in json.loads(capsys.readouterr().out)}
    assert rc == 0
    assert flows["save_prompt"]["kind"] == "record"
    assert flows["identify_image_objects"]["prompt_variables"] == ["imageDataUri"]


def test_cli_run_stubbed_flow(cli_env, capsys):
    rc = main(["run", "create_reminder", "--input", '{"userInput": "提醒我交报告"}', "--json"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {"title": "交报告", "dateTime": "今天下午5点"}


def test_cli_run_input_from_file(cli_env, capsys):
    p = cli_env / "in.yaml"
    p.write_text("csvData: |\n  名称,类别\n  华强电子,电子\nreferenceDate: 2024-06-01\n", encoding="utf-8")
    rc = main(["run", "process_supplier_data", "--input", f"@{p}", "--json"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert out["suppliers"][0]["name"] == "华强电子"
    assert out["suppliers"][0]["addedDate"] == "2024-06-01"


def test_cli_run_schema_error_exit_code(cli_env, capsys):
    rc = main(["run", "intelligent_search", "--input", '{"query": ""}', "--json"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 2
    assert {e["loc"] for e in out["errors"]} == {"query", "knowledgeBase"}


def test_cli_run_malformed_input_exit_code(cli_env, capsys):
    rc = main(["run", "create_reminder", "--input", "{not json", "--json"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 2
    assert out["ok"] is False and out["errors"][0]["code"] == "input:unreadable"

    assert main(["run", "create_reminder", "--input", f"@{cli_env / 'missing.yaml'}"]) == 2


def test_cli_run_flow_failure_exit_code(cli_env, monkeypatch, capsys):
    monkeypatch.setenv("GENFLOW_MODEL_DRIVER", "gemini")
    rc = main(["run", "generate_prompt", "--input", '{"userInput": "x", "promptTemplate": "y"}', "--json"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 1
    assert out["flow"] == "generate_prompt" and "API key" in out["error"]


def test_cli_run_unknown_flow(cli_env):
    assert main(["run", "nope"]) == 2


def test_cli_seed_then_list(cli_env, capsys):
    seed = cli_env / "seed.yaml"
    seed.write_text(
        "- id: recruitment-expert\n  name: 招聘专家\n  userPrompt: 为{{role}}写招聘启事\n"
        "- name: 会议纪要\n  userPrompt: 总结会议\n",
        encoding="utf-8",
    )
    assert main(["seed", "--yaml", str(seed)]) == 0
    assert "Seeded 2/2" in capsys.readouterr().out

    assert main(["run", "list_prompts", "--json"]) == 0
    names = {p["name"] for p in json.loads(capsys.readouterr().out)}
    assert names == {"招聘专家", "会议纪要"}


def test_cli_seed_invalid_file(cli_env, capsys):
    seed = cli_env / "seed.yaml"
    seed.write_text("- scope: private\n", encoding="utf-8")
    assert main(["seed", "--yaml", str(seed)]) == 2
    assert "INVALID" in capsys.readouterr().out


def test_cli_health(cli_env, monkeypatch, capsys):
    assert main(["health", "--json"]) == 0
    ok = json.loads(capsys.readouterr().out)
    assert ok["status"] == "ok" and ok["driver"] == "sqlite3" and ok["storeTime"]

    monkeypatch.setenv("GENFLOW_STORE_URL", f"sqlite:///{cli_env}")
    assert main(["health"]) == 2
    assert "Database connection failed" in capsys.readouterr().out
