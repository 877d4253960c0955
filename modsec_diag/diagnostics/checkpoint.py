"""Elapsed-time checkpoints for a unit of work.

Checkpoints are taken at fixed points of request processing:
- 1: request received (headers available)
- 2: request inspected (body processed)
- 3: response inspected

Each checkpoint is published as a request note "mod_security-time<n>" holding
the elapsed time since the context's base timestamp, in microseconds.
"""

from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Dict, Optional

from .context import LogContext
from .logger import DiagnosticLogger

NOTE_PREFIX = "mod_security-time"


class Checkpoint(IntEnum):
    """Checkpoint numbers."""

    REQUEST_RECEIVED = 1
    REQUEST_INSPECTED = 2
    RESPONSE_INSPECTED = 3


VALID_CHECKPOINTS = frozenset(c.value for c in Checkpoint)


def _microseconds(delta: timedelta) -> int:
    return delta // timedelta(microseconds=1)


def record_checkpoint(
    ctx: LogContext,
    checkpoint_no: int,
    diag: DiagnosticLogger,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Record the current time as checkpoint checkpoint_no.

    Args:
        ctx: Unit-of-work context
        checkpoint_no: 1, 2 or 3
        diag: Logger receiving the trace line (and any internal error)
        now: Override the current time

    Returns:
        Elapsed microseconds, or None if nothing was recorded
    """
    if checkpoint_no not in VALID_CHECKPOINTS:
        diag.log(ctx, 1, "Internal Error: Unknown checkpoint: %d", checkpoint_no)
        return None
    checkpoint_no = int(checkpoint_no)

    if checkpoint_no in ctx.checkpoints:
        diag.log(ctx, 1, "Internal Error: Checkpoint already recorded: %d", checkpoint_no)
        return None

    if now is None:
        now = datetime.now(timezone.utc)

    ctx.checkpoints[checkpoint_no] = now
    elapsed = _microseconds(now - ctx.base_timestamp)
    ctx.request.notes[f"{NOTE_PREFIX}{checkpoint_no}"] = str(elapsed)

    diag.log(ctx, 4, "Time #%d: %d", checkpoint_no, elapsed)
    return elapsed


def checkpoint_report(ctx: LogContext) -> Dict[str, int]:
    """Elapsed microseconds per recorded checkpoint, keyed "time<n>"."""
    return {
        f"time{n}": _microseconds(ctx.checkpoints[n] - ctx.base_timestamp)
        for n in sorted(ctx.checkpoints)
    }
