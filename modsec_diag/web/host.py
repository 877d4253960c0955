"""Touch-points with the host web server's request handling."""

import logging
import secrets
from http import HTTPStatus
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse

from modsec_diag.diagnostics.config import DebugLogPool, DiagnosticsConfig
from modsec_diag.diagnostics.context import LogContext, RequestInfo
from modsec_diag.diagnostics.logger import DiagnosticLogger

logger = logging.getLogger(__name__)

UNIQUE_ID_HEADER = "x-unique-id"


def status_line(status: int) -> str:
    """Status line for a code, e.g. "403 Forbidden"."""
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


def send_error_response(
    ctx: LogContext,
    diag: DiagnosticLogger,
    status: int,
) -> PlainTextResponse:
    """Abort the request with an error status.

    Forces an alert for the unit of work if nothing alert-worthy was logged
    yet, so no error outcome leaves the server silently.
    """
    line = status_line(status)
    ctx.request.status_line = line
    diag.ensure_relevant(ctx, line)
    return PlainTextResponse(line, status_code=status)


def response_protocol(request: RequestInfo) -> Optional[str]:
    """Protocol the server answers with, or None for HTTP/0.9 requests."""
    if request.assbackwards:
        return None

    version = request.http_version
    if version > (1, 0) and "downgrade-1.0" in request.subprocess_env:
        version = (1, 0)

    if version == (1, 0) and "force-response-1.0" in request.subprocess_env:
        return "HTTP/1.0"

    return "HTTP/1.1"


def _parse_http_version(value: str) -> tuple:
    try:
        major, _, minor = value.partition(".")
        return (int(major), int(minor or 0))
    except ValueError:
        return (1, 1)


def cgi_environment(request: Request, server_name: str) -> Dict[str, str]:
    """Standard CGI variables for scripts run on behalf of the request."""
    env = {
        "GATEWAY_INTERFACE": "CGI/1.1",
        "SERVER_NAME": server_name,
        "SERVER_PROTOCOL": f"HTTP/{request.scope.get('http_version', '1.1')}",
        "REQUEST_METHOD": request.method,
        "REQUEST_URI": request.url.path
        + (f"?{request.url.query}" if request.url.query else ""),
        "SCRIPT_NAME": request.url.path,
        "QUERY_STRING": request.url.query,
        "REMOTE_ADDR": request.client.host if request.client else "",
    }
    for name, value in request.headers.items():
        env["HTTP_" + name.upper().replace("-", "_")] = value
    return env


def build_context(
    request: Request,
    config: DiagnosticsConfig,
    pool: DebugLogPool,
) -> LogContext:
    """Create the unit-of-work context for an incoming request.

    Debug log settings are resolved once here for the request's path.
    """
    server_name = config.server.server_name
    info = RequestInfo(
        uri=request.url.path,
        hostname=request.url.hostname,
        remote_ip=request.client.host if request.client else "-",
        server_name=server_name,
        subprocess_env=cgi_environment(request, server_name),
        http_version=_parse_http_version(request.scope.get("http_version", "1.1")),
    )
    info.notes["UNIQUE_ID"] = request.headers.get(UNIQUE_ID_HEADER) or secrets.token_hex(12)

    return LogContext(
        request=info,
        sink=pool.resolve(config.settings_for(info.uri)),
        server=config.server,
    )
