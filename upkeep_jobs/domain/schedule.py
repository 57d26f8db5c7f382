"""
Pure interval and due-ness evaluation for batch worker jobs.

Contract:
    ``next_boundary()``, ``window_start()``, ``pass_due_at()`` and
    ``evaluate_due()`` are PURE -- no I/O, no clock reads.  The worker
    passes in the current timestamp and the active-slot counts it queried.

Architecture: upkeep_jobs/domain.  ZERO I/O.

Invariants enforced:
    - Boundaries are aligned to the Unix epoch: with ``EPOCH_SECONDS`` they
      fall on Thursday 00:00 UTC, the gauge emissions flip.
    - A pass in flight is gated by the interval captured at its start;
      a changed manager interval only matters for the next pass.
"""

from __future__ import annotations

from dataclasses import dataclass

from upkeep_jobs.domain.types import JobState, UpkeepJob

EPOCH_SECONDS = 7 * 24 * 60 * 60
HOUR_SECONDS = 60 * 60


def window_start(ts: int, interval: int) -> int:
    """Start of the interval window containing ``ts``."""
    if interval <= 0:
        raise ValueError(f"Interval must be positive: {interval}")
    return (ts // interval) * interval


def next_boundary(ts: int, interval: int) -> int:
    """First boundary strictly after ``ts``."""
    return window_start(ts, interval) + interval


def pass_due_at(job: UpkeepJob) -> int | None:
    """Timestamp at which the next pass from ``start_index`` may begin.

    While a pass is in flight the answer comes from the captured interval,
    so a pass that ran out of live slots cannot restart inside its own
    window.
    """
    if job.pass_in_flight and job.pass_started_ts is not None and job.interval_seconds:
        return next_boundary(job.pass_started_ts, job.interval_seconds)
    return job.next_due_ts


@dataclass(frozen=True)
class DueDecision:
    """Result of ``evaluate_due``."""

    due: bool
    reason: str
    restart_pass: bool = False  # In-flight pass has nothing left; begin anew


def evaluate_due(
    job: UpkeepJob,
    now_ts: int,
    active_from_cursor: int,
    active_in_range: int,
) -> DueDecision:
    """Decide whether ``job`` should run now.

    A pass whose remaining slots were all deregistered mid-cycle is not
    closed out immediately.  It stays in flight until the next boundary of
    its captured interval, and the restarting batch is the one that wraps
    the cursor and fires the cycle-completion hook.  Per-cycle work such as
    token list cleanup therefore lags one interval in that case.

    Args:
        job: Current job snapshot.
        now_ts: Current Unix timestamp.
        active_from_cursor: Active slots in ``[current_index, end_index)``.
        active_in_range: Active slots in ``[start_index, end_index)``.
    """
    if job.state != JobState.ACTIVE:
        return DueDecision(False, f"job is {job.state.value}")

    if job.pass_in_flight and active_from_cursor > 0:
        return DueDecision(True, "pass in flight")

    due_at = pass_due_at(job)
    if due_at is not None and now_ts < due_at:
        return DueDecision(False, "interval not elapsed")
    if active_in_range == 0:
        return DueDecision(False, "no active entities in range")
    return DueDecision(True, "interval elapsed", restart_pass=job.pass_in_flight)
