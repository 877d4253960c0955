"""Bounded execution of external commands.

Runs an auxiliary script through the shell and captures the first line of its
output. Only the first read from the output pipe is bounded by the timeout;
the remaining output is drained and the child reaped without a timeout. A
child that outlives a failed execute() is terminated when its unit of work
is torn down.
"""

import logging
import os
import selectors
import shlex
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence, Dict

from modsec_diag.diagnostics.config import DEFAULT_EXEC_TIMEOUT, DEFAULT_KILL_GRACE
from modsec_diag.diagnostics.context import LogContext
from modsec_diag.diagnostics.logger import DiagnosticLogger
from modsec_diag.utils.errors import (
    CallerContractViolation,
    CommandError,
    EnvironmentBuildFailure,
    SpawnFailure,
    ReadFailure,
    ReadTimeout,
)
from modsec_diag.utils.escaping import log_escape, log_escape_nq

logger = logging.getLogger(__name__)

# Bytes taken from the output pipe by the first (bounded) read
READ_SIZE = 255


class ExitOutcome(str, Enum):
    """How an execute() call ended."""

    SUCCESS = "success"
    ENV_FAILED = "env_failed"
    SPAWN_FAILED = "spawn_failed"
    READ_FAILED = "read_failed"
    TIMEOUT = "timeout"


_OUTCOMES = {
    EnvironmentBuildFailure: ExitOutcome.ENV_FAILED,
    SpawnFailure: ExitOutcome.SPAWN_FAILED,
    ReadTimeout: ExitOutcome.TIMEOUT,
    ReadFailure: ExitOutcome.READ_FAILED,
}


@dataclass
class CommandResult:
    """Result of a bounded command execution."""

    outcome: ExitOutcome
    first_line: Optional[str] = None
    returncode: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == ExitOutcome.SUCCESS


def build_environment(command: str, env: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Copy env and add the overrides script interpreters expect.

    PATH_TRANSLATED and REDIRECT_STATUS satisfy the security checks of CGI
    interpreters such as php-cgi. The caller's mapping is not modified.

    Raises:
        EnvironmentBuildFailure: If a name or value cannot be exported
    """
    merged: Dict[str, str] = {}
    for name, value in (env or {}).items():
        if not isinstance(name, str) or not isinstance(value, str):
            raise EnvironmentBuildFailure(
                f"Non-string environment entry: {name!r}", command=command
            )
        if not name or "=" in name or "\0" in name or "\0" in value:
            raise EnvironmentBuildFailure(
                f"Invalid environment entry: {name!r}", command=command
            )
        merged[name] = value

    merged["PATH_TRANSLATED"] = command
    merged["REDIRECT_STATUS"] = "302"
    return merged


def shell_command_line(command: str, argv: Optional[Sequence[str]]) -> str:
    """Build the line handed to the shell.

    argv[0] is the command itself and is passed through unquoted; the
    remaining arguments are quoted.
    """
    if not argv:
        return command
    return " ".join([argv[0]] + [shlex.quote(arg) for arg in argv[1:]])


def first_line(data: bytes) -> str:
    """Decode data up to (not including) the first newline or NUL byte."""
    for terminator in (b"\n", b"\0"):
        cut = data.find(terminator)
        if cut != -1:
            data = data[:cut]
    return data.decode("utf-8", errors="replace")


def terminate_process(proc: subprocess.Popen, grace: float = DEFAULT_KILL_GRACE) -> None:
    """Terminate a child that has not been reaped yet.

    Sends SIGTERM, waits up to grace seconds, then SIGKILL.
    """
    if proc.poll() is None:
        logger.debug(f"Terminating child process {proc.pid}")
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"Child process {proc.pid} ignored SIGTERM, killing")
            proc.kill()
            proc.wait()

    if proc.stdout is not None and not proc.stdout.closed:
        proc.stdout.close()


class CommandRunner:
    """Runs external commands on behalf of a unit of work.

    Usage:
        runner = CommandRunner(ctx=ctx, diag=diag)
        result = runner.execute("/usr/local/bin/check.sh", timeout=5)
        if result.success:
            print(result.first_line)
    """

    def __init__(
        self,
        ctx: Optional[LogContext] = None,
        diag: Optional[DiagnosticLogger] = None,
        kill_grace: Optional[float] = None,
    ):
        """Initialize the runner.

        Args:
            ctx: Unit of work owning spawned children; its request's
                subprocess_env is the default environment
            diag: Logger for failures and trace output
            kill_grace: Seconds between SIGTERM and SIGKILL on teardown
        """
        self.ctx = ctx
        self.diag = diag
        if kill_grace is None:
            kill_grace = ctx.server.kill_grace if ctx is not None else DEFAULT_KILL_GRACE
        self.kill_grace = kill_grace

    def _log(self, level: int, fmt: str, *args) -> None:
        if self.ctx is not None and self.diag is not None:
            self.diag.log(self.ctx, level, fmt, *args)
        elif level <= 3:
            logger.error(fmt % args)
        else:
            logger.debug(fmt % args)

    def execute(
        self,
        command: str,
        argv: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run command and capture the first line of its output.

        Args:
            command: Shell command
            argv: Argument vector, argv[0] being the command (default: [command])
            env: Child environment (default: the request's subprocess_env)
            timeout: Seconds to wait for the first output (default: server's exec_timeout)

        Returns:
            CommandResult; failures are logged once at severity 1 and reported
            through the outcome, never raised
        """
        if argv is None:
            argv = [command]
        if env is None and self.ctx is not None:
            env = self.ctx.request.subprocess_env
        if timeout is None:
            timeout = self.ctx.server.exec_timeout if self.ctx is not None else DEFAULT_EXEC_TIMEOUT

        proc: Optional[subprocess.Popen] = None
        try:
            if self.ctx is not None and self.ctx.closed:
                raise SpawnFailure(
                    f"Exec: Execution refused: {log_escape_nq(command)} "
                    f"(unit of work already torn down)",
                    command=command,
                    os_error="unit of work already torn down",
                )
            child_env = build_environment(command, env)
            proc = self._spawn(command, argv, child_env)
            output = self._read_first(command, proc, timeout)
        except CommandError as e:
            self._log(1, "%s", str(e))
            outcome = next(o for cls, o in _OUTCOMES.items() if isinstance(e, cls))
            if proc is not None and self.ctx is None:
                # No unit of work will reap this child
                terminate_process(proc, self.kill_grace)
            return CommandResult(outcome=outcome, error=e.os_error or str(e))

        line = first_line(output)
        self._log(4, 'Exec: First line from script output: "%s"', log_escape(line))

        self._drain(proc)
        returncode = proc.wait()
        proc.stdout.close()

        return CommandResult(
            outcome=ExitOutcome.SUCCESS,
            first_line=line,
            returncode=returncode,
        )

    def _spawn(
        self,
        command: str,
        argv: Sequence[str],
        child_env: Dict[str, str],
    ) -> subprocess.Popen:
        """Start the child through the shell and register it for teardown."""
        self._log(9, "Exec: %s", log_escape_nq(command))

        try:
            proc = subprocess.Popen(
                shell_command_line(command, argv),
                shell=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=None,
                env=child_env,
                bufsize=0,
            )
        except (OSError, ValueError) as e:
            os_error = getattr(e, "strerror", None) or str(e)
            raise SpawnFailure(
                f"Exec: Execution failed: {log_escape_nq(command)} ({os_error})",
                command=command,
                os_error=os_error,
            )

        if self.ctx is not None:
            try:
                self.ctx.register_cleanup(terminate_process, proc, self.kill_grace)
            except CallerContractViolation as e:
                terminate_process(proc, self.kill_grace)
                raise SpawnFailure(
                    f"Exec: Execution failed: {log_escape_nq(command)} ({e})",
                    command=command,
                    os_error=str(e),
                )
        return proc

    def _read_first(
        self,
        command: str,
        proc: subprocess.Popen,
        timeout: float,
    ) -> bytes:
        """Single bounded read from the child's output pipe."""
        if proc.stdout is None:
            raise ReadFailure("Exec: Failed to get script output pipe.", command=command)

        fd = proc.stdout.fileno()
        try:
            with selectors.DefaultSelector() as selector:
                selector.register(fd, selectors.EVENT_READ)
                ready = selector.select(timeout)
            if not ready:
                raise ReadTimeout(
                    f"Exec: Execution timed out while reading output: "
                    f"{log_escape_nq(command)} (no output within {timeout}s)",
                    command=command,
                    timeout=timeout,
                )
            data = os.read(fd, READ_SIZE)
        except (OSError, ValueError) as e:
            os_error = getattr(e, "strerror", None) or str(e)
            raise ReadFailure(
                f"Exec: Execution failed while reading output: "
                f"{log_escape_nq(command)} ({os_error})",
                command=command,
                os_error=os_error,
            )

        if not data:
            raise ReadFailure(
                f"Exec: Execution failed while reading output: "
                f"{log_escape_nq(command)} (End of file found)",
                command=command,
                os_error="End of file found",
            )
        return data

    @staticmethod
    def _drain(proc: subprocess.Popen) -> None:
        """Read and discard the rest of the output, without a timeout."""
        fd = proc.stdout.fileno()
        while True:
            try:
                if not os.read(fd, READ_SIZE):
                    break
            except OSError:
                break
