"""
Errors the dispatcher turns into structured rejections.

Step failures and timeouts are not here: the runner reports those in the
ExecutionRecord instead of raising.
"""

from __future__ import annotations

from models.schemas import Outcome


class DeployHookError(Exception):
    """A trigger rejected before any step ran."""

    outcome: Outcome = Outcome.INVALID_REQUEST
    status_code: int = 400

    def __init__(self, summary: str, procedure: str | None = None, status_code: int | None = None):
        super().__init__(summary)
        self.summary = summary
        self.procedure = procedure
        if status_code is not None:
            self.status_code = status_code


class AuthenticationFailure(DeployHookError):
    outcome = Outcome.UNAUTHORIZED
    status_code = 401


class InvalidRequest(DeployHookError):
    outcome = Outcome.INVALID_REQUEST
    status_code = 400


class UnknownProcedure(DeployHookError):
    outcome = Outcome.UNKNOWN_PROCEDURE
    status_code = 404


class ConcurrencyConflict(DeployHookError):
    """Another run of the same procedure is in progress. The caller may retry later."""
    outcome = Outcome.ALREADY_RUNNING
    status_code = 409
