"""Utility modules for modsec-diag."""

from .errors import (
    DiagnosticsError,
    ConfigurationError,
    CallerContractViolation,
    CommandError,
    EnvironmentBuildFailure,
    SpawnFailure,
    ReadFailure,
    ReadTimeout,
)
from .escaping import log_escape, log_escape_nq

__all__ = [
    "DiagnosticsError",
    "ConfigurationError",
    "CallerContractViolation",
    "CommandError",
    "EnvironmentBuildFailure",
    "SpawnFailure",
    "ReadFailure",
    "ReadTimeout",
    "log_escape",
    "log_escape_nq",
]
