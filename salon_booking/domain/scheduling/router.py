"""Scheduling router - FastAPI endpoints for availability and appointments"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .availability_service import AvailabilityService
from .booking_service import BookingService
from .commands import CommandDispatcher
from .schemas import (
    AppointmentCreate,
    AppointmentResult,
    AppointmentUpdate,
    AvailabilityResponse,
    CancelRequest,
    CancelResult,
    ProfessionalRulesResponse,
    RescheduleRequest,
    RescheduleResult,
    UpcomingAppointment,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/salons/{salon_id}", tags=["Scheduling"])


def get_sync_coordinator(request: Request):
    return getattr(request.app.state, "sync_coordinator", None)


def get_booking_service(
    db: Session = Depends(get_db), sync_coordinator=Depends(get_sync_coordinator)
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, sync_coordinator)


def get_availability_service(
    db: Session = Depends(get_db), sync_coordinator=Depends(get_sync_coordinator)
) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db, sync_coordinator)


def get_command_dispatcher(request: Request) -> CommandDispatcher:
    return request.app.state.command_dispatcher


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    dependencies=[Depends(create_rate_limiter("checkAvailability"))],
)
async def check_availability(
    salon_id: str,
    professionalId: str = Query(...),
    date: str = Query(..., description="YYYY-MM-DD in the salon timezone"),
    serviceId: Optional[str] = Query(None),
    durationMinutes: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Free slots for a professional on a day (all of them unless limit is given)"""
    return await service.check_availability(
        salon_id, professionalId, date, service_id=serviceId, duration_minutes=durationMinutes, limit=limit
    )


@router.get("/professionals/{professional_id}/availability-rules", response_model=ProfessionalRulesResponse)
async def get_professional_availability_rules(
    salon_id: str,
    professional_id: str,
    service: AvailabilityService = Depends(get_availability_service),
):
    return service.get_professional_rules(salon_id, professional_id)


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.post(
    "/appointments",
    response_model=AppointmentResult,
    status_code=201,
    dependencies=[Depends(create_rate_limiter("createAppointment"))],
)
async def create_appointment(
    salon_id: str,
    data: AppointmentCreate,
    service: BookingService = Depends(get_booking_service),
):
    return await service.create_appointment(salon_id, data)


@router.get("/appointments/upcoming", response_model=list[UpcomingAppointment])
async def list_upcoming_by_phone(
    salon_id: str,
    phone: str = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    return service.list_upcoming(salon_id, phone=phone)


@router.get("/customers/{customer_id}/appointments/upcoming", response_model=list[UpcomingAppointment])
async def list_upcoming_for_customer(
    salon_id: str,
    customer_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return service.list_upcoming(salon_id, customer_id=customer_id)


@router.patch(
    "/appointments/{appointment_id}",
    response_model=AppointmentResult,
    dependencies=[Depends(create_rate_limiter("updateAppointment"))],
)
async def update_appointment(
    salon_id: str,
    appointment_id: str,
    data: AppointmentUpdate,
    service: BookingService = Depends(get_booking_service),
):
    return await service.update_appointment(salon_id, appointment_id, data)


@router.post(
    "/appointments/{appointment_id}/reschedule",
    response_model=RescheduleResult,
    response_model_exclude_none=True,
    dependencies=[Depends(create_rate_limiter("rescheduleAppointment"))],
)
async def reschedule_appointment(
    salon_id: str,
    appointment_id: str,
    data: RescheduleRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.reschedule_appointment(salon_id, appointment_id, data.newDate)


@router.post(
    "/appointments/{appointment_id}/cancel",
    response_model=CancelResult,
    response_model_exclude_none=True,
    dependencies=[Depends(create_rate_limiter("cancelAppointment"))],
)
async def cancel_appointment(
    salon_id: str,
    appointment_id: str,
    data: Optional[CancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    return await service.cancel_appointment(salon_id, appointment_id, data.reason if data else None)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResult)
async def complete_appointment(
    salon_id: str,
    appointment_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return await service.complete_appointment(salon_id, appointment_id)


# ============================================================================
# AGENT TOOLS
# ============================================================================


@router.post("/tools/{name}")
async def run_tool(
    salon_id: str,
    name: str,
    arguments: Optional[dict[str, Any]] = Body(None),
    dispatcher: CommandDispatcher = Depends(get_command_dispatcher),
):
    """Entry point for the conversational agent's tool calls"""
    return await dispatcher.dispatch(salon_id, name, arguments)
