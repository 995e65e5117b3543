import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from genflow.core.connectors.manager import Backends
from genflow.core.diagnostics import check_store_health
from genflow.core.exception import FlowExecutionError, SchemaValidationError
from genflow.core.plugins import load_all_plugins
from genflow.core.registry.flows import get_flow, list_flows
from genflow.core.runtime.settings import load_settings
from genflow.core.validation import validate_prompt_records_yaml


def _setup_logging(settings) -> None:
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(message)s" if settings.log_format.lower() == "json" else "%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _read_input(raw: str):
    # "@path" reads a JSON/YAML file; anything else is inline JSON.
    if raw.startswith("@"):
        return yaml.safe_load(Path(raw[1:]).read_text(encoding="utf-8"))
    return json.loads(raw)


def _dump(result) -> object:
    return result.model_dump(by_alias=True, mode="json")


def main(argv=None) -> int:
    argv = argv or sys.argv[1:]
    parser = argparse.ArgumentParser(prog="genflow", description="genflow-core CLI")
    sp = parser.add_subparsers(dest="cmd", required=True)

    flowsp = sp.add_parser("flows", help="List registered flows")
    flowsp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    runp = sp.add_parser("run", help="Run one flow")
    runp.add_argument("flow", help="Flow name")
    runp.add_argument("--input", default="{}", help="Input as inline JSON, or @file (JSON/YAML)")
    runp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    healthp = sp.add_parser("health", help="Check store connectivity")
    healthp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    seedp = sp.add_parser("seed", help="Import prompt records from YAML")
    seedp.add_argument("--yaml", required=True, help="Path to seed YAML (list of prompt records)")
    seedp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    args = parser.parse_args(argv)

    settings = load_settings()
    _setup_logging(settings)
    load_all_plugins(settings=settings)

    if args.cmd == "flows":
        described = [get_flow(name).describe() for name in list_flows()]
        if args.json:
            print(json.dumps(described, ensure_ascii=False))
        else:
            for d in described:
                print(f"{d['name']} ({d['kind']}) {d['input']} -> {d['output']}")
        return 0

    if args.cmd == "run":
        try:
            f = get_flow(args.flow)
        except KeyError:
            print(f"Unknown flow: {args.flow}", file=sys.stderr)
            return 2
        try:
            value = _read_input(args.input)
        except (ValueError, yaml.YAMLError, OSError) as e:
            if args.json:
                print(json.dumps({"ok": False, "errors": [{"code": "input:unreadable", "loc": "<root>", "msg": str(e)}]}, ensure_ascii=False))
            else:
                print(f"INVALID INPUT: {args.flow}")
                print(f"- <root>: input:unreadable - {e}")
            return 2
        try:
            result = f.run_sync(value, settings=settings)
        except SchemaValidationError as e:
            if args.json:
                print(json.dumps({"ok": False, "errors": e.issues}, ensure_ascii=False))
            else:
                print(f"INVALID INPUT: {args.flow}")
                for i in e.issues:
                    print(f"- {i.get('loc')}: {i.get('code')} - {i.get('msg')}")
            return 2
        except FlowExecutionError as e:
            if args.json:
                print(json.dumps({"ok": False, "flow": e.flow_name, "error": str(e.cause)}, ensure_ascii=False))
            else:
                print(f"FAILED: {e}", file=sys.stderr)
            return 1
        out = _dump(result)
        if args.json:
            print(json.dumps(out, ensure_ascii=False))
        else:
            print(json.dumps(out, ensure_ascii=False, indent=2))
        return 0

    if args.cmd == "health":
        report = check_store_health(settings)
        if args.json:
            print(json.dumps(report, ensure_ascii=False))
        elif report["status"] == "ok":
            print(f"OK: store={report['driver']} time={report['storeTime']}")
        else:
            print(f"FAIL: store={report['driver']} {report['message']}: {report['error']}")
        return 0 if report["status"] == "ok" else 2

    if args.cmd == "seed":
        report = validate_prompt_records_yaml(args.yaml)
        if not report["ok"]:
            if args.json:
                print(json.dumps({"ok": False, "errors": report["errors"]}, ensure_ascii=False))
            else:
                print(f"INVALID: {report['seed_yaml']}")
                for e in report["errors"]:
                    print(f"- {e.get('loc')}: {e.get('code')} - {e.get('msg')}")
            return 2

        save = get_flow("save_prompt")
        backends = Backends(settings)
        results = []
        try:
            for rec in report["records"]:
                results.append(_dump(save.run_sync(rec, settings=settings, backends=backends)))
        finally:
            backends.close_all()
        failed = [r for r in results if not r["success"]]
        if args.json:
            print(json.dumps({"ok": not failed, "results": results}, ensure_ascii=False))
        else:
            print(f"Seeded {len(results) - len(failed)}/{len(results)} prompt(s) from {report['seed_yaml']}")
            for r in failed:
                print(f"- {r['id'] or '(new)'}: {r['message']}")
        return 0 if not failed else 1

    return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
