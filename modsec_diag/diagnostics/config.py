"""Layered configuration and the shared debug log writer.

Configuration is resolved in layers: server-wide settings first, then the
settings of the longest matching directory prefix. A layer's unset fields
inherit from the layer beneath it.

Example config file:
    {
        "server": {"server_name": "waf01", "exec_timeout": 30},
        "sink": {"debug_log": "/var/log/modsec_debug.log", "debug_level": 3},
        "directories": {"/admin": {"debug_level": 9}}
    }
"""

import json
import logging
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, TextIO

from pydantic import BaseModel, Field, ValidationError

from modsec_diag.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Matches the host server's default I/O timeout
DEFAULT_EXEC_TIMEOUT = 300.0
DEFAULT_KILL_GRACE = 3.0
DEFAULT_PRODUCT_NAME = "ModSecurity"

MIN_DEBUG_LEVEL = 0
MAX_DEBUG_LEVEL = 9


class DebugLogSettings(BaseModel):
    """One configuration layer for the debug log.

    Fields left as None inherit from the enclosing layer.
    """

    debug_log: Optional[Path] = Field(None, description="Debug log file path")
    debug_level: Optional[int] = Field(
        None,
        ge=MIN_DEBUG_LEVEL,
        le=MAX_DEBUG_LEVEL,
        description="Highest severity written to the debug log",
    )

    @classmethod
    def merge(
        cls,
        parent: Optional["DebugLogSettings"],
        child: Optional["DebugLogSettings"],
    ) -> "DebugLogSettings":
        """Overlay child onto parent; unset child fields inherit."""
        if parent is None:
            return child.model_copy() if child else cls()
        if child is None:
            return parent.model_copy()
        return cls(
            debug_log=child.debug_log if child.debug_log is not None else parent.debug_log,
            debug_level=(
                child.debug_level if child.debug_level is not None else parent.debug_level
            ),
        )


class ServerConfig(BaseModel):
    """Server-wide settings."""

    server_name: str = Field(default_factory=socket.gethostname)
    product_name: str = DEFAULT_PRODUCT_NAME
    exec_timeout: float = Field(DEFAULT_EXEC_TIMEOUT, gt=0)
    kill_grace: float = Field(DEFAULT_KILL_GRACE, ge=0)


class DiagnosticsConfig(BaseModel):
    """Complete configuration: server settings plus layered debug log settings."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    sink: DebugLogSettings = Field(default_factory=DebugLogSettings)
    directories: Dict[str, DebugLogSettings] = Field(default_factory=dict)
    # Named scripts the web app may run, name -> command
    scripts: Dict[str, str] = Field(default_factory=dict)

    def settings_for(self, uri: Optional[str]) -> DebugLogSettings:
        """Resolve debug log settings for a request path.

        The longest directory prefix matching the path is layered onto the
        server-wide settings.
        """
        best: Optional[str] = None
        if uri:
            for prefix in self.directories:
                if uri.startswith(prefix) and (best is None or len(prefix) > len(best)):
                    best = prefix
        if best is None:
            return self.sink.model_copy()
        return DebugLogSettings.merge(self.sink, self.directories[best])


def load_config(path: Path) -> DiagnosticsConfig:
    """Load configuration from a JSON file.

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read config: {e}", source=str(path))

    try:
        return DiagnosticsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config: {e}", source=str(path))


class DebugLogWriter:
    """Append-only debug log shared by all concurrent units of work.

    Each line is written with a single write under a lock, so lines from
    concurrent callers never interleave.

    Usage:
        with DebugLogWriter("/var/log/debug.log") as writer:
            writer.write_line("...\\n")
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._file: Optional[TextIO] = None

    def __enter__(self) -> "DebugLogWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def open(self) -> None:
        """Open the log file for appending."""
        with self._lock:
            if self._file is None:
                self._file = open(self.path, "a", encoding="utf-8")
                logger.debug(f"Opened debug log {self.path}")

    def close(self) -> None:
        """Flush and close the log file."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None
                logger.debug(f"Closed debug log {self.path}")

    @property
    def closed(self) -> bool:
        return self._file is None

    def write_line(self, line: str) -> None:
        """Append one complete line.

        Raises:
            ValueError: If the writer is closed
        """
        with self._lock:
            if self._file is None:
                raise ValueError(f"Debug log {self.path} is closed")
            self._file.write(line)
            self._file.flush()


@dataclass
class LogSinkConfig:
    """Debug log sink resolved for one unit of work."""

    debug_sink: Optional[DebugLogWriter] = None
    debug_level: int = 0


class DebugLogPool:
    """Owns one DebugLogWriter per log path for the life of the server.

    Opened writers are shared between units of work and closed together at
    shutdown.
    """

    def __init__(self):
        self._writers: Dict[Path, DebugLogWriter] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "DebugLogPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def writer_for(self, path: Path) -> DebugLogWriter:
        """Get (opening on first use) the writer for a path."""
        key = Path(path).resolve()
        with self._lock:
            writer = self._writers.get(key)
            if writer is None:
                writer = DebugLogWriter(key)
                writer.open()
                self._writers[key] = writer
            return writer

    def resolve(self, settings: Optional[DebugLogSettings]) -> LogSinkConfig:
        """Turn a settings layer into a sink config.

        Missing path or level means no sink and level 0.
        """
        if settings is None:
            return LogSinkConfig()
        level = settings.debug_level if settings.debug_level is not None else 0
        if settings.debug_log is None:
            return LogSinkConfig(debug_sink=None, debug_level=level)
        return LogSinkConfig(
            debug_sink=self.writer_for(settings.debug_log),
            debug_level=level,
        )

    def close(self) -> None:
        """Close every writer."""
        with self._lock:
            writers = list(self._writers.values())
            self._writers.clear()
        for writer in writers:
            writer.close()
