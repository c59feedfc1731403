"""
Agent command interface

Each booking operation the conversational agent may call has a typed command
model and a handler. The dispatch table is built once at startup by
build_command_table(); dispatch never looks operations up by attribute name.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ...config import AGENT_SLOT_LIMIT
from ...database import SessionLocal
from ...rate_limiter import RateLimiter
from .booking_service import BookingService
from .errors import BookingError, InvalidCommandArgumentsError, UnknownCommandError
from .schemas import AppointmentCreate, AppointmentUpdate

logger = logging.getLogger(__name__)


class Command(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CheckAvailabilityCommand(Command):
    professionalId: str
    date: str
    serviceId: Optional[str] = None
    durationMinutes: Optional[int] = None


class CreateAppointmentCommand(Command):
    customerId: str
    professionalId: str
    serviceId: str
    date: str
    notes: Optional[str] = None


class UpdateAppointmentCommand(Command):
    appointmentId: str
    professionalId: Optional[str] = None
    serviceId: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None


class RescheduleAppointmentCommand(Command):
    appointmentId: str
    newDate: str


class CancelAppointmentCommand(Command):
    appointmentId: str
    reason: Optional[str] = None


class ListUpcomingAppointmentsCommand(Command):
    customerId: Optional[str] = None
    phone: Optional[str] = None


class GetProfessionalRulesCommand(Command):
    professionalId: str


Handler = Callable[[BookingService, str, Any], Awaitable[Any]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    model: type[Command]
    handler: Handler


# ============================================================================
# HANDLERS
# ============================================================================


async def check_availability(booking: BookingService, salon_id: str, cmd: CheckAvailabilityCommand):
    # Conversational replies only offer the first few slots
    return await booking.availability.check_availability(
        salon_id,
        cmd.professionalId,
        cmd.date,
        service_id=cmd.serviceId,
        duration_minutes=cmd.durationMinutes,
        limit=AGENT_SLOT_LIMIT,
    )


async def create_appointment(booking: BookingService, salon_id: str, cmd: CreateAppointmentCommand):
    return await booking.create_appointment(
        salon_id,
        AppointmentCreate(
            customerId=cmd.customerId,
            professionalId=cmd.professionalId,
            serviceId=cmd.serviceId,
            date=cmd.date,
            notes=cmd.notes,
        ),
    )


async def update_appointment(booking: BookingService, salon_id: str, cmd: UpdateAppointmentCommand):
    return await booking.update_appointment(
        salon_id,
        cmd.appointmentId,
        AppointmentUpdate(
            professionalId=cmd.professionalId,
            serviceId=cmd.serviceId,
            date=cmd.date,
            notes=cmd.notes,
        ),
    )


async def reschedule_appointment(booking: BookingService, salon_id: str, cmd: RescheduleAppointmentCommand):
    return await booking.reschedule_appointment(salon_id, cmd.appointmentId, cmd.newDate)


async def cancel_appointment(booking: BookingService, salon_id: str, cmd: CancelAppointmentCommand):
    return await booking.cancel_appointment(salon_id, cmd.appointmentId, cmd.reason)


async def list_upcoming_appointments(booking: BookingService, salon_id: str, cmd: ListUpcomingAppointmentsCommand):
    return booking.list_upcoming(salon_id, customer_id=cmd.customerId, phone=cmd.phone)


async def get_professional_rules(booking: BookingService, salon_id: str, cmd: GetProfessionalRulesCommand):
    return booking.availability.get_professional_rules(salon_id, cmd.professionalId)


COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("checkAvailability", CheckAvailabilityCommand, check_availability),
    CommandSpec("createAppointment", CreateAppointmentCommand, create_appointment),
    CommandSpec("updateAppointment", UpdateAppointmentCommand, update_appointment),
    CommandSpec("rescheduleAppointment", RescheduleAppointmentCommand, reschedule_appointment),
    CommandSpec("cancelAppointment", CancelAppointmentCommand, cancel_appointment),
    CommandSpec("listUpcomingAppointments", ListUpcomingAppointmentsCommand, list_upcoming_appointments),
    CommandSpec("getProfessionalAvailabilityRules", GetProfessionalRulesCommand, get_professional_rules),
)


def build_command_table(commands: tuple[CommandSpec, ...] = COMMANDS) -> dict[str, CommandSpec]:
    table: dict[str, CommandSpec] = {}
    for spec in commands:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(exclude_none=True)
    if isinstance(result, list):
        return [_to_jsonable(item) for item in result]
    return result


class CommandDispatcher:
    def __init__(
        self,
        table: dict[str, CommandSpec],
        rate_limiter: RateLimiter,
        session_factory: Callable[[], Session] = SessionLocal,
        sync_coordinator=None,
    ):
        self.table = table
        self.rate_limiter = rate_limiter
        self.session_factory = session_factory
        self.sync_coordinator = sync_coordinator

    @property
    def command_names(self) -> list[str]:
        return list(self.table)

    async def dispatch(self, salon_id: str, name: str, arguments: Optional[dict] = None) -> dict:
        """
        Validate, rate limit and run one command

        Business failures come back as {"success": False, "errorCode", "message", "suggestion"}
        so the agent can relay them; infrastructure errors propagate.
        """
        try:
            spec = self.table.get(name)
            if spec is None:
                raise UnknownCommandError(name)

            command = spec.model.model_validate(arguments or {})
            self.rate_limiter.hit(salon_id, name)

            db = self.session_factory()
            try:
                result = await spec.handler(BookingService(db, self.sync_coordinator), salon_id, command)
            finally:
                db.close()
        except PydanticValidationError as e:
            error = InvalidCommandArgumentsError(name, e.errors(include_url=False, include_context=False))
            return {"success": False, **error.to_dict()}
        except BookingError as e:
            logger.info(f"⚠️ Command {name} for salon {salon_id} failed: {e.code}")
            return {"success": False, **e.to_dict()}

        return {"success": True, "data": _to_jsonable(result)}
