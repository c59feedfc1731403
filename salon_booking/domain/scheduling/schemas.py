"""Scheduling domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_notes


class AppointmentCreate(BaseModel):
    """Schema for creating an appointment"""

    customerId: str
    professionalId: str
    serviceId: str
    # ISO-8601 start; salon timezone assumed without an offset
    date: str
    endDate: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v):
        return validate_notes(v)


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment"""

    professionalId: Optional[str] = None
    serviceId: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v):
        return validate_notes(v)


class RescheduleRequest(BaseModel):
    newDate: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    slots: list[str]
    totalAvailable: int
    message: str
    date: str
    professionalId: str
    durationMinutes: int


class AppointmentResult(BaseModel):
    appointmentId: str
    message: str


class RescheduleResult(AppointmentResult):
    # Outcome of removing the old appointment from each connected provider
    googleSyncSuccess: Optional[bool] = None
    trinksSyncSuccess: Optional[bool] = None


class CancelResult(BaseModel):
    message: str
    cancelled: bool
    alreadyCancelled: Optional[bool] = None
    googleSyncSuccess: Optional[bool] = None
    trinksSyncSuccess: Optional[bool] = None


class UpcomingAppointment(BaseModel):
    appointmentId: str
    startInstant: str
    endInstant: str
    serviceName: Optional[str] = None
    professionalName: Optional[str] = None
    status: str


class AvailabilityRuleResponse(BaseModel):
    dayOfWeek: int
    dayName: str
    sequence: int
    startTime: str
    endTime: str
    isBreak: bool


class ProfessionalRulesResponse(BaseModel):
    professionalId: str
    professionalName: str
    workingDays: list[str]
    rules: list[AvailabilityRuleResponse]
