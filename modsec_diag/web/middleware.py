"""FastAPI middleware giving every request its own LogContext."""

import logging

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from modsec_diag.diagnostics.checkpoint import Checkpoint, record_checkpoint
from modsec_diag.diagnostics.config import DebugLogPool, DiagnosticsConfig
from modsec_diag.diagnostics.logger import DiagnosticLogger
from .host import build_context, send_error_response

logger = logging.getLogger(__name__)


class InspectionMiddleware(BaseHTTPMiddleware):
    """Creates, checkpoints and tears down the per-request LogContext.

    The context is available to handlers as request.state.log_ctx. Child
    processes registered on it are terminated once the response is produced.
    Debug log writes and teardown run in the threadpool, off the event loop.
    """

    def __init__(
        self,
        app,
        config: DiagnosticsConfig,
        pool: DebugLogPool,
        diag: DiagnosticLogger,
    ):
        super().__init__(app)
        self.config = config
        self.pool = pool
        self.diag = diag

    async def dispatch(self, request: Request, call_next):
        ctx = await run_in_threadpool(build_context, request, self.config, self.pool)
        request.state.log_ctx = ctx
        try:
            await run_in_threadpool(
                record_checkpoint, ctx, Checkpoint.REQUEST_RECEIVED, self.diag
            )
            try:
                response = await call_next(request)
            except Exception as e:
                logger.debug(f"Unhandled error for {request.url.path}: {e!r}")
                response = await run_in_threadpool(send_error_response, ctx, self.diag, 500)
            await run_in_threadpool(
                record_checkpoint, ctx, Checkpoint.RESPONSE_INSPECTED, self.diag
            )
            return response
        finally:
            await run_in_threadpool(ctx.close)
