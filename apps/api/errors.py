"""Scheduling error types

Every error raised by the scheduling core derives from SchedulingError and
carries the HTTP status the API layer answers with.
"""
from typing import List, Optional


class SchedulingError(Exception):
    """Base class for scheduling core errors"""
    status_code = 400
    code = "scheduling_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(SchedulingError):
    """Malformed input: bad time range, duration out of bounds, missing field"""
    status_code = 400
    code = "validation_error"


class ReferentialError(SchedulingError):
    """Referenced entity does not exist, is inactive or soft-deleted"""
    status_code = 404
    code = "referential_error"


class PermissionDeniedError(SchedulingError):
    """Actor role does not allow the operation"""
    status_code = 403
    code = "permission_denied"


class ConflictError(SchedulingError):
    """Scheduling collision on the doctor, room or patient scope"""
    status_code = 409
    code = "conflict"

    def __init__(self, reasons: List[str], message: Optional[str] = None):
        super().__init__(message or f"Appointment conflicts detected: {', '.join(reasons)}")
        self.reasons = list(reasons)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reasons"] = self.reasons
        return data


class TransitionError(SchedulingError):
    """Illegal status transition or failed lifecycle guard"""
    status_code = 409
    code = "transition_error"

    def __init__(self, guard: str, message: str):
        super().__init__(message)
        self.guard = guard

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["guard"] = self.guard
        return data


class StorageError(SchedulingError):
    """Store unavailable or transaction aborted; safe to retry the whole operation"""
    status_code = 503
    code = "storage_error"
    retryable = True
