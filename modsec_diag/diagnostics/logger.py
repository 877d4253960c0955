"""Leveled, dual-sink diagnostic logging.

Severities 1-3 are alert-class: they always reach the operator channel and are
remembered on the LogContext. Severities 4-9 are trace-class: they are written
to the debug log only when one is configured with a sufficient level.

Trace calls are made liberally, so the suppression check runs before any
formatting work.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from modsec_diag.utils.escaping import log_escape, log_escape_nq
from .config import LogSinkConfig
from .context import LogContext, lookup_env_var

logger = logging.getLogger(__name__)

OPERATOR_LOGGER_NAME = "modsec_diag.operator"

# Highest alert-class severity
ALERT_LEVEL = 3

MAX_BODY_LENGTH = 1023
MAX_LINE_LENGTH = 1255

LOGTIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


def current_logtime(now: Optional[datetime] = None) -> str:
    """Format a timestamp the way the host server's access log does."""
    if now is None:
        now = datetime.now()
    return now.astimezone().strftime(LOGTIME_FORMAT)


def render_message(fmt: str, args: tuple) -> str:
    """Substitute printf-style args into fmt, truncated to MAX_BODY_LENGTH."""
    text = fmt % args if args else fmt
    return text[:MAX_BODY_LENGTH]


@dataclass
class ErrorMessage:
    """An error log message captured from the host server."""

    level: int
    file: Optional[str] = None
    line: Optional[int] = None
    status: Optional[int] = None
    message: Optional[str] = None


def format_error_line(em: Optional[ErrorMessage]) -> str:
    """Render an ErrorMessage as one line of bracketed tags.

    Tags appear in the order file, line, level, status, followed by the
    message. Tags whose field is absent are omitted.
    """
    if em is None:
        return ""

    parts = []
    if em.file is not None:
        parts.append(f'[file "{log_escape(em.file)}"] ')
    if em.line is not None and em.line > 0:
        parts.append(f"[line {em.line}] ")
    parts.append(f"[level {em.level}] ")
    if em.status:
        parts.append(f"[status {em.status}] ")
    if em.message is not None:
        parts.append(log_escape_nq(em.message))
    return "".join(parts)


class DiagnosticLogger:
    """Routes messages to the debug log and the operator channel.

    Usage:
        diag = DiagnosticLogger()
        diag.log(ctx, 9, "Parsed %d arguments", 3)   # debug log only
        diag.log(ctx, 1, "Access denied with code %d", 403)  # both channels
    """

    def __init__(self, operator_logger: Optional[logging.Logger] = None):
        """Initialize the logger.

        Args:
            operator_logger: Logger for the operator channel
                (default: the "modsec_diag.operator" logger)
        """
        self.operator_logger = operator_logger or logging.getLogger(OPERATOR_LOGGER_NAME)

    def log(self, ctx: LogContext, level: int, fmt: str, *args) -> None:
        """Log one message for the unit of work.

        Args:
            ctx: Unit-of-work context
            level: Severity, 1 (most severe) to 9
            fmt: printf-style format string
            *args: Format arguments
        """
        sink = ctx.sink or LogSinkConfig()
        debug_sink = sink.debug_sink
        filter_level = sink.debug_level or 0

        if level > ALERT_LEVEL and (debug_sink is None or level > filter_level):
            return

        body = render_message(fmt, args)

        if debug_sink is not None and level <= filter_level:
            line = self.format_debug_line(ctx, level, body)
            try:
                debug_sink.write_line(line)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to write debug log {debug_sink.path}: {e}")

        if level <= ALERT_LEVEL:
            self.operator_logger.error(self.format_operator_line(ctx, body))

            # Alerts force relevance
            ctx.relevance_count += 1
            ctx.alerts.append(body)

    def format_debug_line(self, ctx: LogContext, level: int, body: str) -> str:
        """Compose a newline-terminated debug log line."""
        request = ctx.request
        server_name = request.server_name or ctx.server.server_name
        uri = log_escape_nq(request.uri) if request.uri is not None else ""

        line = (
            f"[{current_logtime()}] [{server_name}/sid#{id(ctx.server):x}]"
            f"[rid#{id(request):x}][{uri}][{level}] {body}"
        )
        return line[:MAX_LINE_LENGTH] + "\n"

    def format_operator_line(self, ctx: LogContext, body: str) -> str:
        """Compose the operator-channel line for an alert."""
        request = ctx.request

        hostname_tag = ""
        if request.hostname is not None:
            hostname_tag = f' [hostname "{log_escape(request.hostname)}"]'

        unique_id_tag = ""
        unique_id = lookup_env_var(request, "UNIQUE_ID")
        if unique_id is not None:
            unique_id_tag = f' [unique_id "{log_escape(unique_id)}"]'

        return (
            f"[client {request.remote_ip}] {ctx.server.product_name}: {body}"
            f'{hostname_tag} [uri "{log_escape(request.uri)}"]{unique_id_tag}'
        )

    def ensure_relevant(self, ctx: LogContext, status_line: str) -> None:
        """Synthesize an alert if the unit of work is ending abnormally unannounced.

        Every path that forces an error outcome must either have logged at
        alert severity already or go through here.
        """
        if not ctx.is_relevant:
            self.log(
                ctx,
                1,
                'Internal error: Issuing "%s" for unspecified error.',
                status_line,
            )


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Uvicorn's access log duplicates the operator channel's client info
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
