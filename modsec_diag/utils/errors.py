"""Error hierarchy for modsec-diag.

Runner failures are raised internally and converted to an ExitOutcome at the
CommandRunner.execute boundary; they never escape to callers of execute.
"""

from typing import Optional


class DiagnosticsError(Exception):
    """Base exception for all modsec-diag errors."""

    pass


class ConfigurationError(DiagnosticsError):
    """Raised when a configuration file or value cannot be loaded."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class CallerContractViolation(DiagnosticsError):
    """Raised when a caller passes a value outside the documented domain."""

    def __init__(self, message: str, value: object = None):
        super().__init__(message)
        self.value = value


class CommandError(DiagnosticsError):
    """Base exception for external command execution failures."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        os_error: Optional[str] = None,
    ):
        super().__init__(message)
        self.command = command
        self.os_error = os_error


class EnvironmentBuildFailure(CommandError):
    """Raised when the child environment cannot be assembled."""

    pass


class SpawnFailure(CommandError):
    """Raised when the child process cannot be started."""

    pass


class ReadFailure(CommandError):
    """Raised when reading the child's output pipe fails."""

    pass


class ReadTimeout(ReadFailure):
    """Raised when the child's output pipe is not readable within the timeout."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, command=command)
        self.timeout = timeout
