"""Scheduling domain errors - business failures reported to callers as error codes"""

from datetime import datetime
from typing import Any, Optional


class BookingError(Exception):
    """Base class for every failure the booking engine reports to a caller"""

    code = "BOOKING_ERROR"
    status_code = 400
    suggestion: Optional[str] = None

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if suggestion is not None:
            self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload = {"errorCode": self.code, "message": self.message, "suggestion": self.suggestion}
        if self.details:
            payload["details"] = self.details
        return payload


# ============================================================================
# VALIDATION
# ============================================================================


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidDateError(ValidationError):
    code = "INVALID_DATE"
    suggestion = "Use ISO-8601, e.g. 2026-03-02 or 2026-03-02T14:00:00-03:00"

    def __init__(self, value: Any):
        super().__init__(f"Invalid date: {value!r}", details={"value": str(value)})


class MissingIdentifierError(ValidationError):
    code = "MISSING_IDENTIFIER"

    def __init__(self, field: str):
        super().__init__(f"{field} is required and must be a valid id", details={"field": field})


class InvalidIntervalError(ValidationError):
    code = "INVALID_INTERVAL"

    def __init__(self, start: datetime, end: datetime):
        super().__init__(
            "Appointment end must be after its start",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )


# ============================================================================
# NOT FOUND
# ============================================================================


class NotFoundError(BookingError):
    code = "NOT_FOUND"
    status_code = 404
    entity = "Resource"

    def __init__(self, entity_id: Optional[str] = None):
        super().__init__(f"{self.entity} not found", details={"id": entity_id} if entity_id else None)


class SalonNotFoundError(NotFoundError):
    code = "SALON_NOT_FOUND"
    entity = "Salon"


class AppointmentNotFoundError(NotFoundError):
    code = "APPOINTMENT_NOT_FOUND"
    entity = "Appointment"


class ProfessionalNotFoundError(NotFoundError):
    code = "PROFESSIONAL_NOT_FOUND"
    entity = "Professional"


class ServiceNotFoundError(NotFoundError):
    code = "SERVICE_NOT_FOUND"
    entity = "Service"


class CustomerNotFoundError(NotFoundError):
    code = "CUSTOMER_NOT_FOUND"
    entity = "Customer"


# ============================================================================
# BUSINESS RULES
# ============================================================================


class AppointmentConflictError(BookingError):
    code = "APPOINTMENT_CONFLICT"
    status_code = 409
    suggestion = "Call checkAvailability and pick one of the returned slots"

    def __init__(
        self,
        conflicting_id: Optional[str] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
    ):
        details = {}
        if conflicting_id:
            details["conflictingAppointmentId"] = conflicting_id
        if starts_at and ends_at:
            details["conflictingStart"] = starts_at.isoformat()
            details["conflictingEnd"] = ends_at.isoformat()
        super().__init__("The professional already has an appointment at this time", details=details)
        self.conflicting_id = conflicting_id


class SlotUnavailableError(BookingError):
    code = "SLOT_UNAVAILABLE"
    status_code = 409
    suggestion = "Call checkAvailability for the new date and pick one of the returned slots"

    def __init__(self, requested: datetime):
        super().__init__(
            "The requested time is not an available slot",
            details={"requestedStart": requested.isoformat()},
        )


class ProfessionalNotAvailableThisDayError(BookingError):
    code = "PROFESSIONAL_NOT_AVAILABLE_THIS_DAY"
    status_code = 422

    def __init__(self, requested_day: str, working_days: list[str]):
        days = ", ".join(working_days)
        super().__init__(
            f"The professional does not work on {requested_day}",
            suggestion=f"Try one of the days the professional works: {days}" if days else None,
            details={"requestedDay": requested_day, "workingDays": working_days},
        )
        self.working_days = working_days


class NoAvailabilityRulesError(BookingError):
    code = "NO_AVAILABILITY_RULES"
    status_code = 422
    suggestion = "Configure the professional's working hours first"

    def __init__(self, professional_id: str):
        super().__init__(
            "The professional has no working hours configured",
            details={"professionalId": professional_id},
        )


class PastDateError(BookingError):
    code = "PAST_DATE"
    status_code = 422
    suggestion = "Pick today or a future date"

    def __init__(self, requested: str):
        super().__init__(f"{requested} is in the past", details={"date": requested})


class AppointmentTerminalStateError(BookingError):
    code = "APPOINTMENT_TERMINAL_STATE"
    status_code = 409

    def __init__(self, appointment_id: str, status: str):
        super().__init__(
            f"Appointment is {status} and can no longer be changed",
            details={"appointmentId": appointment_id, "status": status},
        )
        self.status = status


class ServiceNotBookableError(BookingError):
    code = "SERVICE_NOT_BOOKABLE"
    status_code = 422

    def __init__(self, service_id: str):
        super().__init__("Service is inactive", details={"serviceId": service_id})


class RateLimitExceededError(BookingError):
    code = "RATE_LIMITED"
    status_code = 429
    suggestion = "Wait a moment before trying again"

    def __init__(self, key: str, limit: int, window_seconds: int, retry_after: int):
        super().__init__(
            f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
            details={"key": key, "limit": limit, "retryAfter": retry_after},
        )
        self.retry_after = retry_after


class UnknownCommandError(BookingError):
    code = "UNKNOWN_COMMAND"
    status_code = 404

    def __init__(self, name: str):
        super().__init__(f"Unknown command: {name}", details={"command": name})


class InvalidCommandArgumentsError(ValidationError):
    code = "INVALID_ARGUMENTS"

    def __init__(self, name: str, errors: list[dict[str, Any]]):
        super().__init__(f"Invalid arguments for {name}", details={"errors": errors})
