# src/asynql/cli.py
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from .compiler import TRUE_WORDS, StatementFile, load_statement_file, render_statements
from .config import load_database_config
from .connector import create_connector
from .errors import AsynqlError, ConnectorClosedError, ExitCode, ValidationError, problem_to_dict
from .log import init_logging
from .result import SqlResult
from .types import QueryMode, StatementTemplate, VariableType


# =============================================================================
# Helpers: JSON IO + formatting
# =============================================================================

def _print_payload(payload: Dict[str, Any], fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str))
    elif fmt == "jsonl":
        print(json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))
    else:
        # "text": caller prints human-friendly output
        pass


def _statement_file_to_dict(sf: StatementFile) -> Dict[str, Any]:
    return {
        "source": sf.source_name,
        "dialect": sf.dialect.value,
        "statements": [
            {
                "identifier": t.identifier,
                "variables": [
                    {"name": v.name, "type": v.type.value, "optional": v.optional, "default": v.default}
                    for v in t.variables
                ],
                "placeholders": list(t.placeholders),
                "query": t.raw_text,
            }
            for t in sf.statements
        ],
    }


def _result_to_dict(result: SqlResult) -> Dict[str, Any]:
    d = asdict(result)
    d["kind"] = type(result).__name__
    return d


def _parse_value(vtype: VariableType, raw: str, name: str) -> Any:
    try:
        if vtype is VariableType.INT:
            return int(raw)
        if vtype is VariableType.FLOAT:
            return float(raw)
    except ValueError:
        raise ValidationError(
            f"cannot convert `{raw}` to {vtype.value} for variable `{name}`",
            details={"variable": name, "value": raw},
        ) from None
    if vtype is VariableType.BOOL:
        return raw.strip().lower() in TRUE_WORDS
    return raw


def _parse_params(template: StatementTemplate, pairs: List[str]) -> Dict[str, Any]:
    """Turn repeated `--param name=value` flags into typed values."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValidationError(
                f"--param expects name=value, got `{pair}`",
                remediation="Pass parameters as --param name=value.",
            )
        name, raw = pair.split("=", 1)
        spec = template.variable(name)
        # unknown names pass through and are ignored downstream
        params[name] = raw if spec is None else _parse_value(spec.type, raw, name)
    return params


# =============================================================================
# Commands
# =============================================================================

def cmd_compile(args: argparse.Namespace) -> int:
    files = [load_statement_file(p) for p in args.files]

    if args.format in ("json", "jsonl"):
        _print_payload({"ok": True, "files": [_statement_file_to_dict(sf) for sf in files]}, args.format)
    elif args.format == "sql":
        for sf in files:
            sys.stdout.write(render_statements(sf.dialect, sf.statements))
    else:
        for sf in files:
            print(f"{sf.source_name} ({sf.dialect.value}): {len(sf.statements)} statement(s)")
            for t in sf.statements:
                decls = []
                for v in t.variables:
                    decl = f"{v.name}:{v.type.value}"
                    if v.optional:
                        decl += f"={v.default!r}"
                    decls.append(decl)
                print(f"- {t.identifier}({', '.join(decls)})")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    config = load_database_config(args.config)
    statement_files = {config.type.value: [Path(p) for p in args.statements]}
    connector = create_connector(config, statement_files, logging_queries=args.log_queries)

    outcome: Dict[str, Any] = {}
    try:
        template = connector.statements.get(connector.dialect, args.statement)
        params = _parse_params(template, args.param or [])
        connector.execute(
            args.statement,
            QueryMode(args.mode),
            params,
            on_success=lambda result: outcome.update(result=result),
            on_error=lambda error: outcome.update(error=error),
        )
        connector.wait_all(args.timeout)
    finally:
        connector.close()

    if "error" in outcome:
        raise outcome["error"]
    if "result" not in outcome:
        raise ConnectorClosedError(f"no result for {args.statement} within {args.timeout}s")

    payload = {"ok": True, "statement": args.statement, "result": _result_to_dict(outcome["result"])}
    if args.format in ("json", "jsonl"):
        _print_payload(payload, args.format)
    else:
        print(json.dumps(payload["result"], indent=2, ensure_ascii=False, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="asynql", description="Async SQL statement tooling")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="cmd")

    p_compile = sub.add_parser("compile", help="Compile statement files and list their statements")
    p_compile.add_argument("files", nargs="+", help="Statement source files")
    p_compile.add_argument("--format", choices=["text", "json", "jsonl", "sql"], default="text")
    p_compile.set_defaults(func=cmd_compile)

    p_run = sub.add_parser("run", help="Execute one statement through a connector")
    p_run.add_argument("statement", help="Statement identifier, e.g. players.load")
    p_run.add_argument("--config", required=True, help="Database config (YAML/JSON)")
    p_run.add_argument("--statements", required=True, action="append", help="Statement file (repeatable)")
    p_run.add_argument("--mode", choices=[m.value for m in QueryMode], default=QueryMode.SELECT.value)
    p_run.add_argument("--param", action="append", help="name=value (repeatable)")
    p_run.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for the result")
    p_run.add_argument("--log-queries", action="store_true", help="Log every submitted query")
    p_run.add_argument("--format", choices=["text", "json", "jsonl"], default="text")
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point used by the console script: `from asynql.cli import main`.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "cmd", None):
        parser.print_help()
        return 2

    init_logging(args.log_level)

    try:
        return int(args.func(args))
    except AsynqlError as e:
        payload = {"ok": False, "error": problem_to_dict(e.problem), "exit_code": int(e.exit_code)}
        fmt = getattr(args, "format", "text")
        if fmt in ("json", "jsonl"):
            _print_payload(payload, fmt)
        else:
            err = payload["error"]
            print(f"ERROR[{err.get('code', 'ASYNQL_ERROR')}]: {err.get('message')}", file=sys.stderr)
            if err.get("remediation"):
                print(f"REMEDIATION: {err['remediation']}", file=sys.stderr)
            print(f"DETAILS: {err.get('details', {})}", file=sys.stderr)
        return int(e.exit_code)
    except OSError as e:
        print(f"ERROR[ASYNQL_IO_ERROR]: {e}", file=sys.stderr)
        return int(ExitCode.CONFIG_INVALID)


if __name__ == "__main__":
    sys.exit(main())
