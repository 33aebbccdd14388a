from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class DomainError(ApiError):
    """Recoverable rule violation with a fixed status and code."""

    status_code = 409
    code = "DOMAIN_ERROR"
    default_message = "Operation not allowed."

    def __init__(self, message: str | None = None):
        super().__init__(type(self).status_code, type(self).code, message or type(self).default_message)


class DuplicateOpenRecord(DomainError):
    code = "DUPLICATE_OPEN_RECORD"
    default_message = "Employee already has an open attendance record."


class NotOpen(DomainError):
    code = "NOT_OPEN"
    default_message = "Attendance record is not open."


class InvalidTimeOrder(DomainError):
    status_code = 422
    code = "INVALID_TIME_ORDER"
    default_message = "Check-out time must be after check-in time."


class DurationOutOfRange(DomainError):
    status_code = 422
    code = "DURATION_OUT_OF_RANGE"
    default_message = "Worked duration exceeds the largest storable value."


class NotPending(DomainError):
    code = "NOT_PENDING"
    default_message = "Entity is not awaiting review."


class OpenContestationExists(DomainError):
    code = "OPEN_CONTESTATION_EXISTS"
    default_message = "Attendance record has an unresolved contestation."


class DuplicateOpenContestation(DomainError):
    code = "DUPLICATE_OPEN_CONTESTATION"
    default_message = "A contestation is already pending for this record."


class RecordNotApproved(DomainError):
    code = "RECORD_NOT_APPROVED"
    default_message = "Only pending or approved records can be contested."


class PeriodAlreadyPaid(DomainError):
    code = "PERIOD_ALREADY_PAID"
    default_message = "Payroll for this period is already paid."


class PeriodInProcessing(DomainError):
    code = "PERIOD_IN_PROCESSING"
    default_message = "Payroll for this period is being processed."


class InvalidStatusTransition(DomainError):
    code = "INVALID_STATUS_TRANSITION"
    default_message = "Status transition not allowed."


class ReasonRequired(DomainError):
    status_code = 422
    code = "REASON_REQUIRED"
    default_message = "A reason is required."


class InvalidPeriod(DomainError):
    status_code = 422
    code = "INVALID_PERIOD"
    default_message = "Period end must be after period start."


class EmployeeInactive(DomainError):
    status_code = 403
    code = "EMPLOYEE_INACTIVE"
    default_message = "Inactive employee cannot perform attendance actions."


class SiteInactive(DomainError):
    status_code = 422
    code = "SITE_INACTIVE"
    default_message = "Site is not active."


class InvalidBreakMinutes(DomainError):
    status_code = 422
    code = "INVALID_BREAK_MINUTES"
    default_message = "Break minutes cannot be negative."


class ClientSiteMismatch(DomainError):
    status_code = 403
    code = "CLIENT_SITE_MISMATCH"
    default_message = "Client is not the owner of this site."


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Entity not found."


class RecordNotFound(NotFound):
    code = "RECORD_NOT_FOUND"
    default_message = "Attendance record not found."


class ContestationNotFound(NotFound):
    code = "CONTESTATION_NOT_FOUND"
    default_message = "Contestation not found."


class EmployeeNotFound(NotFound):
    code = "EMPLOYEE_NOT_FOUND"
    default_message = "Employee not found."


class SiteNotFound(NotFound):
    code = "SITE_NOT_FOUND"
    default_message = "Site not found."


class ClientNotFound(NotFound):
    code = "CLIENT_NOT_FOUND"
    default_message = "Client not found."


class LeaveNotFound(NotFound):
    code = "LEAVE_NOT_FOUND"
    default_message = "Leave request not found."


class PayrollNotFound(NotFound):
    code = "PAYROLL_NOT_FOUND"
    default_message = "Payroll record not found."


class ConsistencyViolation(DomainError):
    """An invariant the persistence layer refused; never reconciled silently."""

    status_code = 500
    code = "CONSISTENCY_VIOLATION"
    default_message = "Attendance data consistency violation."


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
