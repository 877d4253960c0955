"""Per-request state threaded through every log and checkpoint call."""

import json
import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from modsec_diag.utils.errors import CallerContractViolation
from .config import LogSinkConfig, ServerConfig


@dataclass
class RequestInfo:
    """The host server's view of the request being inspected."""

    uri: Optional[str] = None
    hostname: Optional[str] = None
    remote_ip: str = "-"
    server_name: str = ""

    # Request-scoped annotations, published for downstream reporting
    notes: Dict[str, str] = field(default_factory=dict)
    # Variables handed to child processes
    subprocess_env: Dict[str, str] = field(default_factory=dict)

    status_line: Optional[str] = None
    http_version: Tuple[int, int] = (1, 1)
    # HTTP/0.9 request (no status line or headers in the response)
    assbackwards: bool = False


def lookup_env_var(request: Optional[RequestInfo], name: str) -> Optional[str]:
    """Resolve a named value: request notes, then subprocess env, then os.environ."""
    if request is not None:
        value = request.notes.get(name)
        if value is None:
            value = request.subprocess_env.get(name)
        if value is not None:
            return value
    return os.environ.get(name)


@dataclass
class LogContext:
    """State owned by one unit of work (one inspected request).

    Never shared between concurrent units of work. Closing the context runs
    registered cleanups, e.g. terminating child processes that are still
    running.

    Usage:
        with LogContext(request=RequestInfo(uri="/index.html")) as ctx:
            logger.log(ctx, 1, "Access denied")
        assert ctx.alerts == ["Access denied"]
    """

    request: RequestInfo = field(default_factory=RequestInfo)
    sink: LogSinkConfig = field(default_factory=LogSinkConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    relevance_count: int = 0
    alerts: List[str] = field(default_factory=list)
    base_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    checkpoints: Dict[int, datetime] = field(default_factory=dict)

    _cleanup: ExitStack = field(default_factory=ExitStack, repr=False)
    _closed: bool = field(default=False, repr=False)

    def __enter__(self) -> "LogContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def is_relevant(self) -> bool:
        """True once at least one alert-class message was logged."""
        return self.relevance_count > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def register_cleanup(self, callback: Callable, *args, **kwargs) -> None:
        """Run callback when the unit of work is torn down (LIFO order).

        Raises:
            CallerContractViolation: If the unit of work is already torn down
        """
        if self._closed:
            raise CallerContractViolation("Unit of work already torn down", value=callback)
        self._cleanup.callback(callback, *args, **kwargs)

    def close(self) -> None:
        """Tear down the unit of work."""
        if self._closed:
            return
        self._closed = True
        self._cleanup.close()

    def to_dict(self) -> Dict[str, Any]:
        """Audit record of the unit of work."""
        return {
            "uri": self.request.uri,
            "remote_ip": self.request.remote_ip,
            "unique_id": self.request.notes.get("UNIQUE_ID"),
            "base_timestamp": self.base_timestamp.isoformat(),
            "relevance_count": self.relevance_count,
            "alerts": list(self.alerts),
            "checkpoints": {
                n: ts.isoformat() for n, ts in sorted(self.checkpoints.items())
            },
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert the audit record to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)
