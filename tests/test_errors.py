"""Tests for error hierarchy."""

import pytest
from modsec_diag.utils.errors import (
    DiagnosticsError,
    ConfigurationError,
    CallerContractViolation,
    CommandError,
    EnvironmentBuildFailure,
    SpawnFailure,
    ReadFailure,
    ReadTimeout,
)


class TestErrorHierarchy:
    """Tests for error class hierarchy."""

    def test_all_errors_inherit_from_base(self):
        """All errors should inherit from DiagnosticsError."""
        errors = [
            ConfigurationError("test"),
            CallerContractViolation("test"),
            CommandError("test"),
            EnvironmentBuildFailure("test"),
            SpawnFailure("test"),
            ReadFailure("test"),
            ReadTimeout("test"),
        ]
        for error in errors:
            assert isinstance(error, DiagnosticsError)

    def test_command_errors_inherit_from_command_error(self):
        """Runner failures should inherit from CommandError."""
        errors = [
            EnvironmentBuildFailure("test"),
            SpawnFailure("test"),
            ReadFailure("test"),
            ReadTimeout("test"),
        ]
        for error in errors:
            assert isinstance(error, CommandError)

    def test_timeout_is_a_read_failure(self):
        """A read timeout is a specific read failure."""
        assert isinstance(ReadTimeout("test"), ReadFailure)


class TestCommandError:
    """Tests for CommandError."""

    def test_captures_command_and_os_error(self):
        """Should capture the command and OS error text."""
        error = SpawnFailure("Exec failed", command="/bin/false", os_error="Permission denied")
        assert error.command == "/bin/false"
        assert error.os_error == "Permission denied"
        assert "Exec failed" in str(error)


class TestReadTimeout:
    """Tests for ReadTimeout."""

    def test_captures_timeout(self):
        """Should capture the timeout value."""
        error = ReadTimeout("Timed out", command="/bin/sleep 5", timeout=0.1)
        assert error.timeout == 0.1
        assert error.command == "/bin/sleep 5"
        assert error.os_error is None


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_captures_source(self):
        """Should capture the config source."""
        error = ConfigurationError("Invalid", source="/etc/modsec.json")
        assert error.source == "/etc/modsec.json"
