"""Tests for the CLI entry point."""

import json
import os
import tempfile

import pytest
from click.testing import CliRunner

from rampbench import cli
from rampbench.cli import main
from rampbench.errors import EngineTimeout, EngineUnavailable

from conftest import ScriptedRunner, breaks_at


FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "..", "fixtures")
CAMPAIGN_YAML = os.path.join(FIXTURES_DIR, "campaign.yaml")


@pytest.fixture
def fake_engine(monkeypatch):
    """Replace OhaRunner in the CLI with a scripted engine."""
    state = {"outcome": breaks_at(180), "installed": True, "runner": None}

    class FakeOha(ScriptedRunner):
        def __init__(self, options=None, binary="oha"):
            super().__init__(state["outcome"])
            self.options = options
            self.binary = binary
            state["runner"] = self

        def check_installed(self):
            if not state["installed"]:
                raise EngineUnavailable("oha is not installed")

    monkeypatch.setattr(cli, "OhaRunner", FakeOha)
    return state


class TestRunCommand:
    def test_run_finds_breaking_point(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", CAMPAIGN_YAML])
        assert result.exit_code == 0, result.output
        assert "Target:  http://localhost:8001/api/demo" in result.output
        assert "Breaking point:      181 req/s" in result.output
        assert "Last stable rate:    175 req/s" in result.output
        assert fake_engine["runner"].rates == [50, 100, 150, 200, 175, 187, 181]

    def test_flags_override_config(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["run", "--config", CAMPAIGN_YAML, "--max-rate", "100", "--no-refine",
             "-H", "X-Trace: 1"],
        )
        assert result.exit_code == 0, result.output
        assert fake_engine["runner"].rates == [50, 100]
        assert fake_engine["runner"].options.headers == [
            "Accept: application/json", "X-Trace: 1",
        ]
        assert "Not reached" in result.output

    def test_run_from_flags_only(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["run", "-u", "http://svc/ping", "--start-rate", "100", "--max-rate", "400",
             "--mode", "exponential", "--max-error-rate", "1", "--no-refine"],
        )
        assert result.exit_code == 0, result.output
        assert fake_engine["runner"].rates == [100, 200]
        assert "Breaking point:      200 req/s" in result.output

    def test_engine_timeout_marks_campaign_incomplete(self, fake_engine):
        def outcome(rate, index):
            if index == 2:
                return EngineTimeout(f"oha did not finish within 40s at {rate} req/s")
            return breaks_at(10_000)(rate, index)

        fake_engine["outcome"] = outcome
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", CAMPAIGN_YAML])
        assert result.exit_code == 1
        assert "INCOMPLETE" in result.output
        assert "did not finish within 40s at 150 req/s" in result.output
        assert len(fake_engine["runner"].calls) == 3

    def test_engine_missing(self, fake_engine):
        fake_engine["installed"] = False
        runner = CliRunner()
        result = runner.invoke(main, ["run", "--config", CAMPAIGN_YAML])
        assert result.exit_code == 1
        assert "not installed" in result.output

    def test_invalid_configuration(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(main, ["run", "-u", "ftp://svc", "--start-rate", "0"])
        assert result.exit_code == 1
        assert "config validation failed" in result.output
        assert "start_rate" in result.output
        assert fake_engine["runner"] is None

    def test_missing_url(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(main, ["run"])
        assert result.exit_code == 1
        assert "target.url" in result.output

    def test_output_dir_writes_report_and_graph(self, fake_engine):
        with tempfile.TemporaryDirectory() as tmpdir:
            runner = CliRunner()
            result = runner.invoke(
                main, ["run", "--config", CAMPAIGN_YAML, "--output-dir", tmpdir]
            )
            assert result.exit_code == 0, result.output
            txt_path = os.path.join(tmpdir, "demo.txt")
            assert os.path.isfile(txt_path)
            assert os.path.isfile(os.path.join(tmpdir, "demo_graph.png"))
            with open(txt_path, "r") as f:
                assert "Breaking point:" in f.read()

            again = runner.invoke(
                main, ["run", "--config", CAMPAIGN_YAML, "--output-dir", tmpdir]
            )
            assert again.exit_code == 0
            assert os.path.isfile(os.path.join(tmpdir, "demo.2.txt"))

    def test_run_with_history_log(self, fake_engine):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            runner = CliRunner()
            result = runner.invoke(
                main, ["run", "--config", CAMPAIGN_YAML, "--log", log_path]
            )
            assert result.exit_code == 0, result.output
            assert "Campaign logged to" in result.output
            with open(log_path, "r") as f:
                lines = f.readlines()
            assert len(lines) == 1
            entry = json.loads(lines[0])
            assert entry["url"] == "http://localhost:8001/api/demo"
            assert entry["status"] == "done"
            assert entry["breaking_point"] == 181

    def test_interrupt_mid_run_still_reports(self, fake_engine):
        def outcome(rate, index):
            if index == 2:
                return KeyboardInterrupt()
            return breaks_at(10_000)(rate, index)

        fake_engine["outcome"] = outcome
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            runner = CliRunner()
            result = runner.invoke(
                main, ["run", "--config", CAMPAIGN_YAML, "--log", log_path]
            )
            assert result.exit_code == 1
            assert "aborted by user during run at 150 req/s" in result.output
            assert "Last stable rate:    100 req/s" in result.output
            with open(log_path, "r") as f:
                entry = json.loads(f.readline())
            assert entry["status"] == "incomplete"
            assert entry["steps"] == 2

    def test_flag_does_not_mask_bad_section(self, fake_engine):
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            f.write("target:\n  url: http://svc/ping\nramp: fast\n")
            f.flush()
            try:
                runner = CliRunner()
                result = runner.invoke(
                    main, ["run", "--config", f.name, "--max-rate", "100"]
                )
                assert result.exit_code == 1
                assert "'ramp' must be a mapping" in result.output
                assert fake_engine["runner"] is None
            finally:
                os.unlink(f.name)


class TestMultipleTargets:
    @staticmethod
    def _slow_path_breaks_at_100(fake_engine):
        def outcome(rate, index):
            url = fake_engine["runner"].calls[-1].url
            limit = 100 if url.endswith("/slow") else 10_000
            return breaks_at(limit)(rate, index)
        return outcome

    def test_one_campaign_per_url(self, fake_engine):
        fake_engine["outcome"] = self._slow_path_breaks_at_100(fake_engine)
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            runner = CliRunner()
            result = runner.invoke(
                main,
                ["run", "-u", "http://svc/fast", "-u", "http://svc/slow",
                 "--max-rate", "200", "--no-refine", "--max-error-rate", "1",
                 "-o", tmpdir, "-n", "session", "--log", log_path],
            )
            assert result.exit_code == 0, result.output
            assert fake_engine["runner"].rates == [50, 100, 150, 200, 50, 100]
            assert "[1/2] http://svc/fast" in result.output
            assert "[2/2] http://svc/slow" in result.output
            assert "SUMMARY" in result.output

            with open(os.path.join(tmpdir, "session.txt"), "r") as f:
                text = f.read()
            assert "Targets:      2 URLs" in text
            assert "Breaking point:      100 req/s" in text
            assert "Not reached" in text
            assert os.path.isfile(os.path.join(tmpdir, "session_graph.png"))

            with open(log_path, "r") as f:
                entries = [json.loads(line) for line in f]
            assert [e["url"] for e in entries] == ["http://svc/fast", "http://svc/slow"]
            assert entries[1]["breaking_point"] == 100

    def test_incomplete_second_target_fails_session(self, fake_engine):
        def outcome(rate, index):
            if fake_engine["runner"].calls[-1].url.endswith("/b"):
                return EngineTimeout("oha did not finish")
            return breaks_at(10_000)(rate, index)

        fake_engine["outcome"] = outcome
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["run", "-u", "http://svc/a", "-u", "http://svc/b", "--max-rate", "100"],
        )
        assert result.exit_code == 1
        assert "[2/2] http://svc/b" in result.output
        assert "DONE" in result.output
        assert "INCOMPLETE" in result.output

    def test_url_flag_replaces_config_targets(self, fake_engine):
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["run", "--config", CAMPAIGN_YAML, "-u", "http://other/ping", "--max-rate", "100"],
        )
        assert result.exit_code == 0, result.output
        assert {c.url for c in fake_engine["runner"].calls} == {"http://other/ping"}


class TestClassifyCommand:
    def test_healthy_run(self):
        output = os.path.join(FIXTURES_DIR, "oha-healthy.json")
        runner = CliRunner()
        result = runner.invoke(main, ["classify", "--output", output, "--rate", "100"])
        assert result.exit_code == 0
        assert "Status: OK (healthy)" in result.output
        assert "Requests: 1000 total" in result.output

    def test_failing_run(self):
        output = os.path.join(FIXTURES_DIR, "oha-failing.json")
        runner = CliRunner()
        result = runner.invoke(main, ["classify", "--output", output, "--rate", "200"])
        assert result.exit_code == 0
        assert "Status: BREAK (broken)" in result.output
        assert "Reason: error-rate-exceeded" in result.output

    def test_rate_limit_threshold_flag(self):
        output = os.path.join(FIXTURES_DIR, "oha-failing.json")
        runner = CliRunner()
        result = runner.invoke(
            main,
            ["classify", "--output", output, "--rate", "200", "--max-rate-limited", "1"],
        )
        assert result.exit_code == 0
        assert "Reason: rate-limited-exceeded" in result.output

    def test_malformed_output(self):
        output = os.path.join(FIXTURES_DIR, "oha-malformed.json")
        runner = CliRunner()
        result = runner.invoke(main, ["classify", "--output", output, "--rate", "100"])
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestCheckConfigCommand:
    def test_valid_config(self):
        runner = CliRunner()
        result = runner.invoke(main, ["check-config", "--config", CAMPAIGN_YAML])
        assert result.exit_code == 0
        assert "Configuration OK: http://localhost:8001/api/demo" in result.output
        assert "Planned rates (10 steps): 50, 100, 150" in result.output
        assert "Refinement: on (resolution 10 req/s)" in result.output

    def test_invalid_config(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            f.write("target:\n  url: not-a-url\n")
            f.flush()
            try:
                runner = CliRunner()
                result = runner.invoke(main, ["check-config", "--config", f.name])
                assert result.exit_code == 1
                assert "target.url" in result.output
            finally:
                os.unlink(f.name)
