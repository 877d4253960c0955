"""Tests for the CLI."""

import json

import pytest
from click.testing import CliRunner
from modsec_diag.cli import cli


@pytest.fixture
def runner(monkeypatch):
    for name in ("MODSEC_CONFIG", "MODSEC_DEBUG_LOG", "MODSEC_DEBUG_LEVEL", "UNIQUE_ID"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


class TestEscape:
    """Tests for the escape command."""

    def test_escapes_quotes(self, runner):
        result = runner.invoke(cli, ["escape", 'a"b'])
        assert result.exit_code == 0
        assert result.output == 'a\\"b\n'

    def test_allow_quotes(self, runner):
        result = runner.invoke(cli, ["escape", "--allow-quotes", 'a"b\tc'])
        assert result.output == 'a"b\\tc\n'


class TestFormatError:
    """Tests for the format-error command."""

    def test_level_only(self, runner):
        result = runner.invoke(cli, ["format-error", "--level", "1"])
        assert result.exit_code == 0
        assert result.output == "[level 1] \n"

    def test_all_fields(self, runner):
        result = runner.invoke(
            cli,
            ["format-error", "--file", "rules.conf", "--line", "7",
             "--level", "2", "--status", "403", "Denied"],
        )
        assert result.output == '[file "rules.conf"] [line 7] [level 2] [status 403] Denied\n'


class TestExec:
    """Tests for the exec command."""

    def test_success(self, runner):
        result = runner.invoke(cli, ["exec", "printf 'hello\\nworld\\n'", "--timeout", "1"])
        assert result.exit_code == 0
        assert "hello" in result.output
        assert "world" not in result.output
        assert "success" in result.output

    def test_timeout_exit_code(self, runner):
        result = runner.invoke(cli, ["exec", "/bin/sleep 5", "--timeout", "0.1"])
        assert result.exit_code == 1
        assert "timeout" in result.output

    def test_env(self, runner):
        result = runner.invoke(
            cli,
            ["exec", "--env", "WHO=cli", "--timeout", "1", 'printf "%s\\n" "$WHO"'],
        )
        assert result.exit_code == 0
        assert "cli" in result.output

    def test_bad_env(self, runner):
        result = runner.invoke(cli, ["exec", "--env", "novalue", "/bin/true"])
        assert result.exit_code == 2

    @pytest.mark.parametrize("timeout", ["-1", "0"])
    def test_non_positive_timeout(self, runner, timeout):
        result = runner.invoke(cli, ["exec", "/bin/true", f"--timeout={timeout}"])
        assert result.exit_code == 2
        assert "Traceback" not in result.output


class TestLog:
    """Tests for the log command."""

    def test_trace_to_debug_log(self, runner, tmp_path):
        """Trace messages are written with a sufficient debug level."""
        debug_log = tmp_path / "debug.log"
        result = runner.invoke(
            cli,
            ["--debug-log", str(debug_log), "--debug-level", "5",
             "log", "5", "hello trace", "--uri", "/x"],
        )

        assert result.exit_code == 0
        content = debug_log.read_text()
        assert "[/x][5] hello trace\n" in content

    def test_trace_suppressed(self, runner):
        result = runner.invoke(cli, ["log", "7", "quiet"])
        assert result.exit_code == 0
        assert "Suppressed" in result.output

    def test_alert(self, runner):
        result = runner.invoke(cli, ["log", "1", "loud", "--hostname", "example.com"])
        assert result.exit_code == 0
        assert "Alert recorded" in result.output

    def test_config_file(self, runner, tmp_path):
        """Directory settings from the config file apply."""
        debug_log = tmp_path / "debug.log"
        config = tmp_path / "modsec.json"
        config.write_text(json.dumps({
            "sink": {"debug_log": str(debug_log), "debug_level": 0},
            "directories": {"/admin": {"debug_level": 9}},
        }))

        runner.invoke(cli, ["--config", str(config), "log", "9", "public", "--uri", "/"])
        runner.invoke(cli, ["--config", str(config), "log", "9", "admin", "--uri", "/admin/x"])

        content = debug_log.read_text()
        assert "public" not in content
        assert "admin" in content

    def test_invalid_config(self, runner, tmp_path):
        config = tmp_path / "modsec.json"
        config.write_text(json.dumps({"sink": {"debug_level": 99}}))

        result = runner.invoke(cli, ["--config", str(config), "log", "1", "x"])
        assert result.exit_code == 1
        assert "Invalid config" in result.output
