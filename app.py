"""
FastAPI application — webhook dispatcher for deployment procedures.

Endpoints:
  POST /hooks/{procedure_id} — Run a procedure (token in X-Deploy-Token or Authorization: Bearer)
  POST /hooks                — Same, procedure id given as {"procedure": "..."} in the body
  GET  /procedures           — List configured procedures and whether they are running
  GET  /health               — Health check
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
from activities.run_procedure import run_procedure
from features.locks import ExecutionSerializer
from features.procedures import ProcedureDefinition, ProcedureRegistry, load_registry
from models.errors import (
    AuthenticationFailure,
    ConcurrencyConflict,
    DeployHookError,
    InvalidRequest,
    UnknownProcedure,
)
from models.schemas import OUTCOME_STATUS, ExecutionRecord, Outcome
from utils.auth import authenticate, extract_token

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

registry: ProcedureRegistry | None = None
serializer = ExecutionSerializer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global registry
    # Both raise on bad settings, which aborts startup
    config.validate()
    registry = load_registry(config.PROCEDURES_FILE)
    log.info("Concurrency policy: %s", config.CONCURRENCY_POLICY)
    yield


app = FastAPI(
    title="Deploy Hook",
    description="Runs predefined deployment procedures on authenticated webhook triggers",
    version="1.0.0",
    lifespan=lifespan,
)


class StepReport(BaseModel):
    index: int
    name: str
    exit_code: int | None = None
    duration_sec: float
    timed_out: bool = False


class TriggerResponse(BaseModel):
    outcome: Outcome
    summary: str
    procedure: str | None = None
    run_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None
    steps: list[StepReport] | None = None
    failed_step: int | None = None
    output: str | None = None  # captured output of the failing step


@app.exception_handler(DeployHookError)
async def rejected_trigger(request: Request, exc: DeployHookError):
    log.warning("Trigger rejected (%s): %s", exc.outcome.value, exc.summary)
    body = TriggerResponse(outcome=exc.outcome, summary=exc.summary, procedure=exc.procedure)
    return JSONResponse(status_code=exc.status_code, content=_dump(body))


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "deploy-hook",
        "procedures": len(registry) if registry is not None else 0,
        "running": len(serializer.busy()),
    }


# ── Procedures ────────────────────────────────────────────────────────

@app.get("/procedures")
async def list_procedures(request: Request):
    """List configured procedures. Requires the deploy token."""
    _authorize(request)
    return {
        "procedures": [
            {
                "id": proc.id,
                "description": proc.description,
                "steps": [step.name for step in proc.steps],
                "timeout": proc.timeout,
                "running": serializer.is_busy(proc.id),
                "queued": serializer.waiting(proc.id),
            }
            for proc in _registry()
        ]
    }


# ── Triggers ──────────────────────────────────────────────────────────

@app.post("/hooks/{procedure_id}", response_model=TriggerResponse)
async def trigger_procedure(procedure_id: str, request: Request):
    """Run the named procedure and report its outcome."""
    return await _trigger(request, procedure_id)


@app.post("/hooks", response_model=TriggerResponse)
async def trigger_from_body(request: Request):
    """Run the procedure named by the body's "procedure" field."""
    return await _trigger(request, None)


async def _trigger(request: Request, procedure_id: str | None) -> JSONResponse:
    _authorize(request)
    payload = await _read_payload(request)

    if procedure_id is None:
        procedure_id = payload.get("procedure")
        if not isinstance(procedure_id, str) or not procedure_id:
            raise InvalidRequest("No procedure given; use /hooks/{procedure} or a 'procedure' field")

    client = request.client.host if request.client else "unknown"
    log.info("Trigger for %s from %s", procedure_id, client)

    record = await dispatch(procedure_id)
    return JSONResponse(status_code=OUTCOME_STATUS[record.outcome], content=_dump(_report(record)))


async def dispatch(procedure_id: str) -> ExecutionRecord:
    """
    Look up a procedure and run it unless a run of it is already in progress.

    Raises:
        UnknownProcedure: the id is not in the registry.
        ConcurrencyConflict: the procedure is busy (or stayed busy for the
            whole queue wait under the queue policy).
    """
    procedure = _registry().lookup(procedure_id)
    if procedure is None:
        raise UnknownProcedure(f"Unknown procedure: {procedure_id}", procedure=procedure_id)

    if not await _acquire(procedure.id):
        raise ConcurrencyConflict(
            f"Deployment already in progress for {procedure.id}; retry later",
            procedure=procedure.id,
        )

    loop = asyncio.get_running_loop()
    try:
        future = loop.run_in_executor(None, _run_exclusive, procedure)
    except BaseException:
        serializer.release(procedure.id)
        raise
    return await future


def _run_exclusive(procedure: ProcedureDefinition) -> ExecutionRecord:
    """Run a procedure whose slot is already held, releasing it when the run ends."""
    try:
        return run_procedure(procedure)
    finally:
        serializer.release(procedure.id)


async def _acquire(procedure_id: str) -> bool:
    if config.CONCURRENCY_POLICY == "queue":
        return await serializer.wait_acquire(procedure_id, config.QUEUE_WAIT_SECONDS)
    return serializer.try_acquire(procedure_id)


# ── Helpers ───────────────────────────────────────────────────────────

def _registry() -> ProcedureRegistry:
    if registry is None:
        raise RuntimeError("Procedure registry not loaded")
    return registry


def _authorize(request: Request) -> None:
    if not authenticate(extract_token(request.headers), config.DEPLOY_SECRET):
        raise AuthenticationFailure("Invalid or missing deploy token")


async def _read_payload(request: Request) -> dict[str, Any]:
    """Read the body: empty or a JSON object, at most MAX_BODY_BYTES."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > config.MAX_BODY_BYTES:
        raise InvalidRequest(f"Request body larger than {config.MAX_BODY_BYTES} bytes", status_code=413)

    body = await request.body()
    if len(body) > config.MAX_BODY_BYTES:
        raise InvalidRequest(f"Request body larger than {config.MAX_BODY_BYTES} bytes", status_code=413)
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequest("Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return payload


def _report(record: ExecutionRecord) -> TriggerResponse:
    failing = record.failing_step
    return TriggerResponse(
        outcome=record.outcome,
        summary=record.summary,
        procedure=record.procedure,
        run_id=record.run_id,
        started_at=record.started_at,
        completed_at=record.completed_at,
        duration_sec=record.duration_sec,
        steps=[
            StepReport(
                index=s.index,
                name=s.name,
                exit_code=s.exit_code,
                duration_sec=s.duration_sec,
                timed_out=s.timed_out,
            )
            for s in record.steps
        ],
        failed_step=record.failed_step,
        output=failing.output if failing else None,
    )


def _dump(response: TriggerResponse) -> dict:
    return response.model_dump(mode="json", exclude_none=True)
