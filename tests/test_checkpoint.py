"""Tests for checkpoint recording."""

from datetime import timedelta

import pytest
from modsec_diag.diagnostics import Checkpoint, checkpoint_report, record_checkpoint


class TestRecordCheckpoint:
    """Tests for record_checkpoint."""

    def test_records_elapsed(self, diag, make_ctx):
        """Checkpoint stores the instant and publishes elapsed microseconds."""
        ctx = make_ctx()
        now = ctx.base_timestamp + timedelta(microseconds=1500)

        elapsed = record_checkpoint(ctx, 1, diag, now=now)

        assert elapsed == 1500
        assert ctx.checkpoints == {1: now}
        assert ctx.request.notes["mod_security-time1"] == "1500"
        assert ctx.relevance_count == 0

    def test_trace_line(self, diag, make_ctx, debug_writer):
        """A severity-4 trace line reports the elapsed time."""
        ctx = make_ctx(writer=debug_writer, level=4)
        now = ctx.base_timestamp + timedelta(milliseconds=2)

        record_checkpoint(ctx, Checkpoint.RESPONSE_INSPECTED, diag, now=now)

        content = debug_writer.path.read_text()
        assert "[4] Time #3: 2000\n" in content

    @pytest.mark.parametrize("checkpoint_no", [0, 4, -1])
    def test_invalid_number(self, diag, make_ctx, operator_records, checkpoint_no):
        """Unknown checkpoints log one internal error and change nothing."""
        ctx = make_ctx()

        assert record_checkpoint(ctx, checkpoint_no, diag) is None

        assert ctx.checkpoints == {}
        assert ctx.request.notes == {}
        assert ctx.alerts == [f"Internal Error: Unknown checkpoint: {checkpoint_no}"]
        assert len(operator_records()) == 1

    def test_recorded_once(self, diag, make_ctx):
        """A checkpoint keeps its first value."""
        ctx = make_ctx()
        first = ctx.base_timestamp + timedelta(microseconds=10)
        record_checkpoint(ctx, 2, diag, now=first)

        assert record_checkpoint(ctx, 2, diag, now=first + timedelta(seconds=1)) is None

        assert ctx.checkpoints[2] == first
        assert ctx.request.notes["mod_security-time2"] == "10"
        assert ctx.relevance_count == 1


class TestCheckpointReport:
    """Tests for checkpoint_report."""

    def test_report(self, diag, make_ctx):
        """Only recorded checkpoints are reported."""
        ctx = make_ctx()
        record_checkpoint(ctx, 1, diag, now=ctx.base_timestamp + timedelta(microseconds=5))
        record_checkpoint(ctx, 3, diag, now=ctx.base_timestamp + timedelta(microseconds=50))

        assert checkpoint_report(ctx) == {"time1": 5, "time3": 50}
