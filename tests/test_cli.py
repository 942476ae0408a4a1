import json

from asynql.cli import _parse_value, main
from asynql.compiler import parse_default
from asynql.errors import ExitCode
from asynql.types import VariableType

STATEMENTS = """\
-- #! sqlite
-- #{ t
-- #  { init
CREATE TABLE IF NOT EXISTS t (v INTEGER, label TEXT);
-- #  }
-- #  { add
-- #    :v int
-- #    :label string "none"
INSERT INTO t (v, label) VALUES (:v, :label);
-- #  }
-- #  { all
SELECT v, label FROM t ORDER BY v;
-- #  }
-- #}
"""


def _write_project(tmp_path):
    sql = tmp_path / "sqlite.sql"
    sql.write_text(STATEMENTS, encoding="utf-8")
    cfg = tmp_path / "config.yml"
    cfg.write_text("database:\n  type: sqlite\n  sqlite:\n    file: cli.sqlite\n", encoding="utf-8")
    return str(cfg), str(sql)


def test_compile_text(tmp_path, capsys):
    _, sql = _write_project(tmp_path)
    assert main(["compile", sql]) == 0
    out = capsys.readouterr().out
    assert "(sqlite): 3 statement(s)" in out
    assert "- t.add(v:int, label:string='none')" in out
    assert "- t.init()" in out


def test_compile_json(tmp_path, capsys):
    _, sql = _write_project(tmp_path)
    assert main(["compile", sql, "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["ok"] is True
    (f,) = payload["files"]
    assert f["dialect"] == "sqlite"
    add = next(s for s in f["statements"] if s["identifier"] == "t.add")
    assert add["placeholders"] == ["v", "label"]
    assert add["variables"][1] == {"name": "label", "type": "string", "optional": True, "default": "none"}


def test_compile_sql_output_recompiles(tmp_path, capsys):
    _, sql = _write_project(tmp_path)
    assert main(["compile", sql, "--format", "sql"]) == 0
    rendered = tmp_path / "rendered.sql"
    rendered.write_text(capsys.readouterr().out, encoding="utf-8")
    assert main(["compile", str(rendered)]) == 0
    assert "3 statement(s)" in capsys.readouterr().out


def test_compile_reports_parse_errors(tmp_path, capsys):
    bad = tmp_path / "bad.sql"
    bad.write_text("-- #! sqlite\n-- #{ a\nSELECT 1;\n", encoding="utf-8")
    assert main(["compile", str(bad)]) == int(ExitCode.PARSE_ERROR)
    err = capsys.readouterr().err
    assert "ERROR[ASYNQL_PARSE_ERROR]: unclosed scope `a`" in err
    assert "REMEDIATION:" in err


def test_run_insert_then_select(tmp_path, capsys):
    cfg, sql = _write_project(tmp_path)
    base = ["run", "--config", cfg, "--statements", sql]

    assert main(base + ["t.init", "--mode", "generic"]) == 0
    capsys.readouterr()

    assert main(base + ["t.add", "--mode", "insert", "--param", "v=5", "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["result"]["insert_id"] == 1
    assert payload["result"]["affected_rows"] == 1

    assert main(base + ["t.all", "--format", "json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["statement"] == "t.all"
    assert payload["result"]["kind"] == "SqlSelectResult"
    assert payload["result"]["rows"] == [{"v": 5, "label": "none"}]
    assert payload["result"]["columns"] == [{"name": "v", "type": "int"}, {"name": "label", "type": "string"}]


def test_run_maps_errors_to_exit_codes(tmp_path, capsys):
    cfg, sql = _write_project(tmp_path)
    base = ["run", "--config", cfg, "--statements", sql]

    assert main(base + ["t.add", "--mode", "insert"]) == int(ExitCode.VALIDATION_ERROR)
    assert "missing required variable `v`" in capsys.readouterr().err

    assert main(base + ["t.add", "--param", "v=five"]) == int(ExitCode.VALIDATION_ERROR)
    assert "cannot convert `five` to int" in capsys.readouterr().err

    # table not created yet
    assert main(base + ["t.all"]) == int(ExitCode.SQL_ERROR)
    assert "ERROR[ASYNQL_SQL_ERROR]: SQL EXECUTE error: no such table" in capsys.readouterr().err

    missing = str(tmp_path / "missing.yml")
    assert main(["run", "--config", missing, "--statements", sql, "t.all"]) == int(ExitCode.CONFIG_INVALID)


def test_no_command_prints_help(capsys):
    assert main([]) == 2
    assert "usage:" in capsys.readouterr().out


def test_bool_params_follow_the_statement_file_words():
    for word in ("true", "ON", "yes", "1", "y", "no", "0", "false"):
        assert _parse_value(VariableType.BOOL, word, "flag") == parse_default(VariableType.BOOL, word)[1]
    assert _parse_value(VariableType.BOOL, "y", "flag") is False
