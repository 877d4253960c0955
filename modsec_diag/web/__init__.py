"""FastAPI integration: per-request contexts and the demo app."""

from .host import (
    build_context,
    cgi_environment,
    response_protocol,
    send_error_response,
    status_line,
)
from .middleware import InspectionMiddleware

__all__ = [
    "build_context",
    "cgi_environment",
    "response_protocol",
    "send_error_response",
    "status_line",
    "InspectionMiddleware",
]
