"""Demo FastAPI app running configured scripts under request inspection.

Provides:
- GET /healthz - Liveness and version
- POST /exec/{name} - Run a configured script, return its first output line
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, List

from fastapi import FastAPI, Request
from pydantic import BaseModel, Field

from modsec_diag import __version__
from modsec_diag.diagnostics.checkpoint import Checkpoint, checkpoint_report, record_checkpoint
from modsec_diag.diagnostics.config import DebugLogPool, DiagnosticsConfig
from modsec_diag.diagnostics.logger import DiagnosticLogger
from modsec_diag.process import CommandRunner
from modsec_diag.utils.escaping import log_escape
from .host import send_error_response
from .middleware import InspectionMiddleware

logger = logging.getLogger(__name__)


class ExecRequest(BaseModel):
    """Arguments for a script run."""

    args: List[str] = Field(default_factory=list, description="Extra arguments")
    timeout: Optional[float] = Field(None, gt=0, description="Read timeout in seconds")


class ExecResponse(BaseModel):
    """Outcome of a script run."""

    outcome: str
    first_line: Optional[str] = None
    returncode: Optional[int] = None
    alerts: List[str] = Field(default_factory=list)
    timings: dict = Field(default_factory=dict)


def create_app(
    config: Optional[DiagnosticsConfig] = None,
    pool: Optional[DebugLogPool] = None,
    diag: Optional[DiagnosticLogger] = None,
) -> FastAPI:
    """Build the app. The debug log pool is closed on shutdown."""
    config = config or DiagnosticsConfig()
    pool = pool or DebugLogPool()
    diag = diag or DiagnosticLogger()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        pool.close()

    app = FastAPI(title="modsec-diag", version=__version__, lifespan=lifespan)
    app.add_middleware(InspectionMiddleware, config=config, pool=pool, diag=diag)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "version": __version__}

    @app.post("/exec/{name}", response_model=ExecResponse)
    def run_script(name: str, request: Request, body: Optional[ExecRequest] = None):
        ctx = request.state.log_ctx
        body = body or ExecRequest()

        command = config.scripts.get(name)
        if command is None:
            diag.log(ctx, 3, "Exec: Unknown script: %s", log_escape(name))
            return send_error_response(ctx, diag, 404)

        record_checkpoint(ctx, Checkpoint.REQUEST_INSPECTED, diag)
        runner = CommandRunner(ctx=ctx, diag=diag)
        result = runner.execute(
            command,
            argv=[command, *body.args] if body.args else None,
            timeout=body.timeout,
        )

        return ExecResponse(
            outcome=result.outcome.value,
            first_line=result.first_line,
            returncode=result.returncode,
            alerts=list(ctx.alerts),
            timings=checkpoint_report(ctx),
        )

    return app


def run_server(
    config: Optional[DiagnosticsConfig] = None,
    port: int = 8080,
    host: str = "127.0.0.1",
):
    """Run the demo app with uvicorn."""
    import uvicorn

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")
