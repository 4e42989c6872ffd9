"""
Activity: Procedure Runner — executes a procedure's steps as external commands.

Each step runs in its own process group with stdout and stderr combined.
The procedure's timeout covers the whole run: when it expires the in-flight
step's group is terminated and no further steps start.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
import uuid
from datetime import datetime, timezone

import config
from features.procedures.models import ProcedureDefinition, StepDefinition
from models.schemas import ExecutionRecord, Outcome, StepResult

log = logging.getLogger(__name__)

# Passed through when a procedure does not inherit the server's environment
BASE_ENV_VARS = ("PATH", "HOME", "LANG")

# Never handed to child processes
WITHHELD_ENV_VARS = ("DEPLOY_SECRET",)

# Exit code reported for a step whose program could not be started
SPAWN_FAILED_EXIT_CODE = 127


def run_procedure(
    procedure: ProcedureDefinition,
    output_limit: int | None = None,
    kill_grace: float | None = None,
) -> ExecutionRecord:
    """
    Run every step of a procedure in order.

    Returns:
        An ExecutionRecord whose outcome is succeeded, step-failed (with
        failed_step set to the first failing step) or timed-out (with
        failed_step set to the step that was killed).
    """
    output_limit = config.OUTPUT_LIMIT if output_limit is None else output_limit
    kill_grace = config.KILL_GRACE_SECONDS if kill_grace is None else kill_grace

    record = ExecutionRecord(
        run_id=f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}",
        procedure=procedure.id,
        started_at=_now(),
    )
    total = len(procedure.steps)
    start = time.monotonic()
    deadline = start + procedure.timeout
    timed_out = False
    killed: StepResult | None = None
    log.info("[%s] Running %s (%d steps, timeout %.0fs)", record.run_id, procedure.id, total, procedure.timeout)

    for index, step in enumerate(procedure.steps, start=1):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log.error("[%s] Time budget spent before step %d/%d", record.run_id, index, total)
            timed_out = True
            break

        log.info("[%s] Step %d/%d %s: %s", record.run_id, index, total, step.name, shlex.join(step.command))
        result = _run_step(procedure, step, index, remaining, output_limit, kill_grace)
        record.steps.append(result)

        if result.timed_out:
            log.error("[%s] Step %d/%d %s: TIMEOUT after %.1fs", record.run_id, index, total, step.name, result.duration_sec)
            timed_out = True
            killed = result
            record.failed_step = index
            break
        if result.ok:
            log.info("[%s] Step %d/%d %s: ok (%.2fs)", record.run_id, index, total, step.name, result.duration_sec)
            continue

        log.error("[%s] Step %d/%d %s: failed (exit=%s)", record.run_id, index, total, step.name, result.exit_code)
        if record.failed_step is None:
            record.failed_step = index
        if step.abort_on_failure:
            break

    record.completed_at = _now()
    record.duration_sec = round(time.monotonic() - start, 2)

    if timed_out:
        record.outcome = Outcome.TIMED_OUT
        during = f" during step {killed.index} ({killed.name})" if killed else ""
        record.summary = f"{procedure.id} timed out after {procedure.timeout:g}s{during}"
    elif record.failed_step is not None:
        record.outcome = Outcome.STEP_FAILED
        failing = record.failing_step
        record.summary = (
            f"{procedure.id} failed at step {failing.index} ({failing.name}), "
            f"exit code {failing.exit_code}"
        )
    else:
        record.outcome = Outcome.SUCCEEDED
        record.summary = f"{procedure.id} succeeded ({total} steps in {record.duration_sec:g}s)"

    log.info("[%s] %s", record.run_id, record.summary)
    return record


def _run_step(
    procedure: ProcedureDefinition,
    step: StepDefinition,
    index: int,
    timeout: float,
    output_limit: int,
    kill_grace: float,
) -> StepResult:
    cwd = procedure.step_cwd(step)
    result = StepResult(index=index, name=step.name, command=list(step.command), started_at=_now())
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            list(step.command),
            cwd=str(cwd) if cwd else None,
            env=_build_env(procedure, step),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        result.exit_code = SPAWN_FAILED_EXIT_CODE
        result.output = f"Could not start {step.command[0]!r}: {e}"
        result.duration_sec = round(time.monotonic() - start, 2)
        return result

    try:
        output, _ = proc.communicate(timeout=timeout)
        result.exit_code = proc.returncode
    except subprocess.TimeoutExpired:
        output = _terminate(proc, kill_grace)
        result.timed_out = True

    result.output = _tail(output or "", output_limit)
    result.duration_sec = round(time.monotonic() - start, 2)
    return result


def _terminate(proc: subprocess.Popen, grace: float) -> str:
    """SIGTERM the step's process group, SIGKILL it if still alive after grace seconds.

    Waits at most two grace periods. If the output pipe is still open after
    that, a process outside the group holds it; the pipe is abandoned and
    whatever was read so far is returned.
    """
    _signal_group(proc, signal.SIGTERM)
    try:
        output, _ = proc.communicate(timeout=grace)
        return output or ""
    except subprocess.TimeoutExpired:
        log.warning("Process group %d ignored SIGTERM, killing", proc.pid)

    _signal_group(proc, signal.SIGKILL)
    try:
        output, _ = proc.communicate(timeout=grace)
        return output or ""
    except subprocess.TimeoutExpired as e:
        log.warning("Process %d left a detached process holding its output; abandoning the pipe", proc.pid)
        partial = e.output

    proc.stdout.close()
    proc.wait()
    if isinstance(partial, bytes):
        partial = partial.decode("utf-8", errors="replace")
    return partial or ""


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


def _build_env(procedure: ProcedureDefinition, step: StepDefinition) -> dict:
    """Build environment for subprocess: inherited or restricted, plus the step's own vars."""
    if procedure.inherit_env:
        env = os.environ.copy()
    else:
        env = {k: os.environ[k] for k in BASE_ENV_VARS if k in os.environ}
    for name in WITHHELD_ENV_VARS:
        env.pop(name, None)
    env.update(step.env)
    return env


def _tail(output: str, limit: int) -> str:
    """Keep the last limit characters of a step's output."""
    if limit <= 0 or len(output) <= limit:
        return output
    return "...(truncated)\n" + output[-limit:]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
