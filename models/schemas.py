"""
Run records for the deploy hook.

Procedure definitions live in features.procedures.models; these are the
per-run results the runner produces and the dispatcher reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    STEP_FAILED = "step-failed"
    TIMED_OUT = "timed-out"
    UNAUTHORIZED = "unauthorized"
    INVALID_REQUEST = "invalid-request"
    UNKNOWN_PROCEDURE = "unknown-procedure"
    ALREADY_RUNNING = "already-running"


# HTTP status for each outcome a trigger can end with
OUTCOME_STATUS = {
    Outcome.SUCCEEDED: 200,
    Outcome.INVALID_REQUEST: 400,
    Outcome.UNAUTHORIZED: 401,
    Outcome.UNKNOWN_PROCEDURE: 404,
    Outcome.ALREADY_RUNNING: 409,
    Outcome.STEP_FAILED: 500,
    Outcome.TIMED_OUT: 504,
}


@dataclass
class StepResult:
    """Exit status and captured output of one step."""
    index: int  # 1-based position in the procedure
    name: str
    command: list[str]
    exit_code: int | None = None  # None when the process was killed
    output: str = ""
    started_at: str = ""
    duration_sec: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class ExecutionRecord:
    """Complete record of one procedure run. Discarded after the response is sent."""
    run_id: str
    procedure: str
    started_at: str = ""
    completed_at: str = ""
    duration_sec: float = 0.0
    outcome: Outcome = Outcome.SUCCEEDED
    failed_step: int | None = None  # 1-based index of the first failing step
    summary: str = ""
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failing_step(self) -> StepResult | None:
        if self.failed_step is None:
            return None
        return self.steps[self.failed_step - 1]
