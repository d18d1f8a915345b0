"""
errors.py - Error taxonomy for the study-progression engine

Every service raises one of these; the API layer renders them through a single
exception handler so the client always gets {"detail", "error", ...} JSON with
enough structure to render guidance (e.g. remaining cooldown seconds).
"""

from typing import Any, Dict


class ProgressionError(Exception):
    status_code = 400
    code = "progression_error"

    def __init__(self, message: str = "", **detail: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.detail}


class NotFound(ProgressionError):
    status_code = 404
    code = "not_found"


class InvalidState(ProgressionError):
    status_code = 409
    code = "invalid_state"


class ContentIncomplete(InvalidState):
    code = "content_incomplete"


class CooldownActive(InvalidState):
    code = "cooldown_active"

    def __init__(self, remaining_seconds: int, cooldown_ends_at: str):
        super().__init__(
            f"Cooldown active. Can retry in {remaining_seconds} seconds",
            remaining_seconds=remaining_seconds,
            cooldown_ends_at=cooldown_ends_at,
        )
        self.remaining_seconds = remaining_seconds


class DiagnosticInProgress(InvalidState):
    code = "diagnostic_in_progress"


class AttemptInProgress(InvalidState):
    code = "attempt_in_progress"


class DayLocked(InvalidState):
    code = "day_locked"


class NoOpenSession(InvalidState):
    code = "no_open_session"


class ValidationError(ProgressionError):
    status_code = 422
    code = "validation_error"


class TransientDependencyError(ProgressionError):
    status_code = 503
    code = "dependency_unavailable"


class PlanExists(InvalidState):
    code = "plan_exists"


class DayPassed(InvalidState):
    code = "day_passed"
