"""Bounded external command execution."""

from .runner import (
    CommandRunner,
    CommandResult,
    ExitOutcome,
    build_environment,
    terminate_process,
)

__all__ = [
    "CommandRunner",
    "CommandResult",
    "ExitOutcome",
    "build_environment",
    "terminate_process",
]
