"""Diagnostic logging, per-request context and checkpoints."""

from .config import (
    DebugLogSettings,
    DebugLogWriter,
    DebugLogPool,
    DiagnosticsConfig,
    LogSinkConfig,
    ServerConfig,
    load_config,
)
from .context import LogContext, RequestInfo, lookup_env_var
from .logger import (
    DiagnosticLogger,
    ErrorMessage,
    format_error_line,
    setup_logging,
)
from .checkpoint import Checkpoint, record_checkpoint, checkpoint_report

__all__ = [
    "DebugLogSettings",
    "DebugLogWriter",
    "DebugLogPool",
    "DiagnosticsConfig",
    "LogSinkConfig",
    "ServerConfig",
    "load_config",
    "LogContext",
    "RequestInfo",
    "lookup_env_var",
    "DiagnosticLogger",
    "ErrorMessage",
    "format_error_line",
    "setup_logging",
    "Checkpoint",
    "record_checkpoint",
    "checkpoint_report",
]
