"""Shared fixtures."""

import logging

import pytest

from modsec_diag.diagnostics import (
    DebugLogWriter,
    DiagnosticLogger,
    LogContext,
    LogSinkConfig,
    RequestInfo,
    ServerConfig,
)
from modsec_diag.diagnostics.logger import OPERATOR_LOGGER_NAME


@pytest.fixture
def diag():
    return DiagnosticLogger()


@pytest.fixture
def debug_writer(tmp_path):
    with DebugLogWriter(tmp_path / "debug.log") as writer:
        yield writer


@pytest.fixture
def make_ctx(monkeypatch):
    """Factory for contexts with a predictable request and server."""
    monkeypatch.delenv("UNIQUE_ID", raising=False)
    created = []

    def _make(writer=None, level=0, **request_fields):
        fields = {"uri": "/index.html", "remote_ip": "10.0.0.1"}
        fields.update(request_fields)
        ctx = LogContext(
            request=RequestInfo(**fields),
            sink=LogSinkConfig(debug_sink=writer, debug_level=level),
            server=ServerConfig(server_name="waf01"),
        )
        created.append(ctx)
        return ctx

    yield _make
    for ctx in created:
        ctx.close()


@pytest.fixture
def operator_records(caplog):
    """Operator-channel records captured during the test."""
    caplog.set_level(logging.DEBUG)

    def _records():
        return [r for r in caplog.records if r.name == OPERATOR_LOGGER_NAME]

    return _records
