from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class _KindError(ApiError):
    """ApiError with a fixed status and code; only the message varies."""

    status: int = 400
    kind: str = "BAD_REQUEST"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None):
        super().__init__(status_code=self.status, code=self.kind, message=message or self.default_message)


class Unauthenticated(_KindError):
    status = 401
    kind = "UNAUTHENTICATED"
    default_message = "Authentication required."


class AccountDeactivated(_KindError):
    status = 403
    kind = "ACCOUNT_DEACTIVATED"
    default_message = "Your account has been deactivated. Please contact HR for assistance."


class Unauthorized(_KindError):
    status = 403
    kind = "UNAUTHORIZED"
    default_message = "You are not allowed to perform this action."


class NotFound(_KindError):
    status = 404
    kind = "NOT_FOUND"
    default_message = "Resource not found."


class DuplicateSubmission(_KindError):
    status = 409
    kind = "DUPLICATE_SUBMISSION"
    default_message = "Timesheet for this week has already been submitted."


class InvalidDateRange(_KindError):
    status = 422
    kind = "INVALID_DATE_RANGE"
    default_message = "End date must be after start date."


class InvalidExtension(_KindError):
    status = 422
    kind = "INVALID_EXTENSION"
    default_message = "New end date must be after the current end date."


class MissingReason(_KindError):
    status = 422
    kind = "MISSING_REASON"
    default_message = "A termination reason is required."


class NoEligibleMentor(_KindError):
    status = 409
    kind = "NO_ELIGIBLE_MENTOR"
    default_message = "No mentor in this department has capacity."


class RemoteServiceError(_KindError):
    status = 502
    kind = "REMOTE_SERVICE_ERROR"
    default_message = "A backing service failed. Please try again."


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
