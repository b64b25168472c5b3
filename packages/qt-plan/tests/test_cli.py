"""CLI tests using Click's test runner: offline commands and a fake executor."""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from qt_plan.config import get_settings

from conftest import DEPARTMENT_TEMPLATE, DEPARTMENTS


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli():
    from qt_plan.cli import main
    return main


@pytest.fixture
def plan_files(tmp_path, bitmap_scan_text, seq_scan_text):
    before = tmp_path / "before.txt"
    before.write_text(bitmap_scan_text)
    after = tmp_path / "after.json"
    after.write_text(json.dumps([{"Plan": {
        "Node Type": "Seq Scan",
        "Relation Name": "employee_simple",
        "Alias": "employee_simple",
        "Startup Cost": 0.0,
        "Total Cost": 191.39,
        "Plan Rows": 9000,
        "Plan Width": 68,
    }}]))
    return before, after


@pytest.fixture
def use_fake_executor(monkeypatch, fake_executor):
    monkeypatch.setattr(
        "qt_plan.cli._common.build_executor", lambda dsn, pool_size=1: fake_executor
    )
    return fake_executor


class TestMain:
    def test_help(self, runner, cli):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "explain", "parse", "compare"):
            assert command in result.output

    def test_version(self, runner, cli):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    @pytest.fixture
    def log_calls(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        get_settings.cache_clear()
        yield calls
        get_settings.cache_clear()

    def test_log_level_from_settings(self, runner, cli, plan_files, monkeypatch, log_calls):
        monkeypatch.setenv("QT_PLAN_LOG_LEVEL", "warning")
        result = runner.invoke(cli, ["parse", str(plan_files[0])])
        assert result.exit_code == 0, result.output
        assert log_calls[0]["level"] == "WARNING"

    def test_verbose_overrides_log_level(self, runner, cli, plan_files, monkeypatch, log_calls):
        monkeypatch.setenv("QT_PLAN_LOG_LEVEL", "ERROR")
        result = runner.invoke(cli, ["-v", "parse", str(plan_files[0])])
        assert result.exit_code == 0, result.output
        assert log_calls[0]["level"] == logging.DEBUG

    def test_invalid_log_level(self, runner, cli, plan_files, monkeypatch, log_calls):
        monkeypatch.setenv("QT_PLAN_LOG_LEVEL", "chatty")
        result = runner.invoke(cli, ["parse", str(plan_files[0])])
        assert result.exit_code == 1
        assert "log_level" in result.output
        assert log_calls == []


class TestParse:
    def test_canonical_text(self, runner, cli, plan_files, bitmap_scan_text):
        result = runner.invoke(cli, ["parse", str(plan_files[0])])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == bitmap_scan_text

    def test_json_output(self, runner, cli, plan_files):
        result = runner.invoke(cli, ["parse", "--json", str(plan_files[1])])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["operation"] == "SeqScan"
        assert data["total_cost"] == 191.39

    def test_unparseable(self, runner, cli, tmp_path):
        bad = tmp_path / "bad.txt"
        bad.write_text("Seq Scan on t  (cost=9.00..1.00 rows=1 width=4)")
        result = runner.invoke(cli, ["parse", str(bad)])
        assert result.exit_code == 1
        assert "total_cost" in result.output

    def test_not_utf8(self, runner, cli, tmp_path):
        binary = tmp_path / "plan.bin"
        binary.write_bytes(b"\xff\xfeSeq Scan")
        result = runner.invoke(cli, ["parse", str(binary)])
        assert result.exit_code == 1
        assert "not a UTF-8 text file" in result.output

    def test_missing_file(self, runner, cli):
        result = runner.invoke(cli, ["parse", "/nonexistent/plan.txt"])
        assert result.exit_code != 0


class TestCompare:
    def test_json(self, runner, cli, plan_files):
        before, after = plan_files
        result = runner.invoke(cli, ["compare", str(before), str(after), "--label", "Sales", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["label"] == "Sales"
        assert data["scan_method_changed"] is True
        assert data["cost_delta"] == pytest.approx(178.75)
        assert data["structural_diff"] == []

    def test_full_tree_table(self, runner, cli, plan_files):
        before, after = plan_files
        result = runner.invoke(cli, ["compare", str(before), str(after), "--full-tree"])
        assert result.exit_code == 0, result.output
        assert "scan method changed: yes" in result.output
        assert "BitmapIndexScan" in result.output

    def test_negative_tolerance(self, runner, cli, plan_files):
        before, after = plan_files
        result = runner.invoke(cli, ["compare", str(before), str(after), "--tolerance", "-1"])
        assert result.exit_code == 2


class TestRun:
    def _scenario(self, tmp_path, **overrides):
        data = {
            "name": "departments",
            "template": DEPARTMENT_TEMPLATE,
            "mode": "before_after",
            "count_matches": True,
            "cases": DEPARTMENTS,
            "expectations": [{"label": "Sales", "operation": "SeqScan"}],
        }
        data.update(overrides)
        path = tmp_path / "scenario.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    def test_json_report(self, runner, cli, tmp_path, use_fake_executor):
        result = runner.invoke(cli, ["run", str(self._scenario(tmp_path)), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["ok"] is True
        assert [c["label"] for c in data["cases"]] == DEPARTMENTS
        assert use_fake_executor.refresh_calls == [None]

    def test_table_report(self, runner, cli, tmp_path, use_fake_executor):
        result = runner.invoke(cli, ["run", str(self._scenario(tmp_path)), "--workers", "2"])
        assert result.exit_code == 0, result.output
        assert "All 4 cases passed." in result.output

    def test_expectation_failure_exits_1(self, runner, cli, tmp_path, use_fake_executor):
        path = self._scenario(tmp_path, expectations=[{"label": "HR", "operation": "SeqScan"}])
        result = runner.invoke(cli, ["run", str(path), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["summary"]["expectation_failures"] == 1

    def test_invalid_scenario(self, runner, cli, tmp_path, use_fake_executor):
        result = runner.invoke(cli, ["run", str(self._scenario(tmp_path, mode="whenever"))])
        assert result.exit_code == 1
        assert "Unknown mode" in result.output

    def test_bad_expectation_type_reported_before_capture(self, runner, cli, tmp_path, use_fake_executor):
        path = self._scenario(tmp_path, expectations=[{"max_total_cost": "cheap"}])
        result = runner.invoke(cli, ["run", str(path)])
        assert result.exit_code == 1
        assert "max_total_cost must be a number" in result.output
        assert use_fake_executor.explain_calls == []

    def test_bad_workers(self, runner, cli, tmp_path, use_fake_executor):
        result = runner.invoke(cli, ["run", str(self._scenario(tmp_path)), "--workers", "0"])
        assert result.exit_code == 2


class TestExplain:
    def test_text_plan(self, runner, cli, use_fake_executor):
        use_fake_executor.analyzed = True
        result = runner.invoke(cli, ["explain", DEPARTMENT_TEMPLATE, "Sales", "--format", "text", "--count"])
        assert result.exit_code == 0, result.output
        assert result.output.startswith("Seq Scan on employee_simple  (cost=0.00..191.39 rows=9000 width=68)")
        assert "Matched rows: 9000" in result.output
        assert use_fake_executor.explain_calls[0]["params"] == ("Sales",)

    def test_overrides(self, runner, cli, use_fake_executor):
        use_fake_executor.analyzed = True
        result = runner.invoke(cli, [
            "explain", DEPARTMENT_TEMPLATE, "Sales", "--json",
            "--set", "enable_seqscan=off", "--set", "enable_bitmapscan=off",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["plan"]["operation"] == "IndexScan"
        assert data["planner_overrides"] == {"enable_seqscan": "off", "enable_bitmapscan": "off"}

    def test_bad_override(self, runner, cli, use_fake_executor):
        result = runner.invoke(cli, ["explain", DEPARTMENT_TEMPLATE, "Sales", "--set", "enable_seqscan"])
        assert result.exit_code == 2

    def test_bad_template(self, runner, cli, use_fake_executor):
        result = runner.invoke(cli, ["explain", "SELECT 1", "Sales"])
        assert result.exit_code == 2
        assert use_fake_executor.explain_calls == []

    def test_query_error(self, runner, cli, use_fake_executor, query_error):
        use_fake_executor.fail_on["Sales"] = query_error
        result = runner.invoke(cli, ["explain", DEPARTMENT_TEMPLATE, "Sales"])
        assert result.exit_code == 1
        assert "does not exist" in result.output
