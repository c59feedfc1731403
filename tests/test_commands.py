import pytest

from salon_booking.domain.scheduling.commands import (
    COMMANDS,
    CheckAvailabilityCommand,
    CommandDispatcher,
    CommandSpec,
    build_command_table,
)
from salon_booking.models import STATUS_CANCELLED, Appointment
from salon_booking.rate_limiter import RateLimiter

from .conftest import MONDAY, local


@pytest.fixture
def rate_limiter():
    return RateLimiter(limits={"createAppointment": 2, "checkAvailability": 30})


@pytest.fixture
def dispatcher(session_factory, rate_limiter):
    return CommandDispatcher(build_command_table(), rate_limiter, session_factory=session_factory)


def test_table_exposes_every_agent_command():
    assert list(build_command_table()) == [
        "checkAvailability",
        "createAppointment",
        "updateAppointment",
        "rescheduleAppointment",
        "cancelAppointment",
        "listUpcomingAppointments",
        "getProfessionalAvailabilityRules",
    ]


def test_duplicate_command_names_are_rejected():
    async def handler(booking, salon_id, cmd):
        return None

    with pytest.raises(ValueError):
        build_command_table(COMMANDS + (CommandSpec("checkAvailability", CheckAvailabilityCommand, handler),))


async def test_unknown_command(dispatcher, salon):
    result = await dispatcher.dispatch(salon.id, "deleteEverything", {})

    assert result["success"] is False
    assert result["errorCode"] == "UNKNOWN_COMMAND"


async def test_invalid_arguments_are_reported_not_raised(dispatcher, salon):
    result = await dispatcher.dispatch(salon.id, "checkAvailability", {"date": MONDAY, "weather": "sunny"})

    assert result["success"] is False
    assert result["errorCode"] == "INVALID_ARGUMENTS"
    fields = {tuple(error["loc"]) for error in result["details"]["errors"]}
    assert ("professionalId",) in fields
    assert ("weather",) in fields


async def test_check_availability_offers_two_slots(dispatcher, salon, professional, service):
    result = await dispatcher.dispatch(
        salon.id,
        "checkAvailability",
        {"professionalId": professional.id, "date": MONDAY, "serviceId": service.id},
    )

    assert result["success"] is True
    assert result["data"]["slots"] == ["2026-03-02T09:00:00-03:00", "2026-03-02T09:15:00-03:00"]
    assert result["data"]["totalAvailable"] == 33


async def test_business_errors_carry_code_and_suggestion(dispatcher, salon, professional):
    result = await dispatcher.dispatch(
        salon.id, "checkAvailability", {"professionalId": professional.id, "date": "2026-03-03"}
    )

    assert result["success"] is False
    assert result["errorCode"] == "PROFESSIONAL_NOT_AVAILABLE_THIS_DAY"
    assert "Segunda, Quarta" in result["suggestion"]


async def test_create_then_cancel(dispatcher, db, salon, professional, service, customer):
    created = await dispatcher.dispatch(
        salon.id,
        "createAppointment",
        {
            "customerId": customer.id,
            "professionalId": professional.id,
            "serviceId": service.id,
            "date": f"{MONDAY}T14:00:00",
        },
    )
    appointment_id = created["data"]["appointmentId"]

    cancelled = await dispatcher.dispatch(
        salon.id, "cancelAppointment", {"appointmentId": appointment_id, "reason": "Changed plans"}
    )

    assert cancelled == {"success": True, "data": {"message": "Appointment cancelled", "cancelled": True}}
    assert db.get(Appointment, appointment_id).status == STATUS_CANCELLED


async def test_conflict_comes_back_with_details(dispatcher, salon, professional, service, customer, make_appointment):
    existing = make_appointment(local(MONDAY, "10:00"))

    result = await dispatcher.dispatch(
        salon.id,
        "createAppointment",
        {
            "customerId": customer.id,
            "professionalId": professional.id,
            "serviceId": service.id,
            "date": f"{MONDAY}T10:30:00",
        },
    )

    assert result["errorCode"] == "APPOINTMENT_CONFLICT"
    assert result["details"]["conflictingAppointmentId"] == existing.id


async def test_rate_limit_is_per_salon_and_command(dispatcher, salon, customer):
    arguments = {"customerId": customer.id, "professionalId": "x", "serviceId": "y", "date": MONDAY}
    for _ in range(2):
        await dispatcher.dispatch(salon.id, "createAppointment", arguments)

    result = await dispatcher.dispatch(salon.id, "createAppointment", arguments)

    assert result["errorCode"] == "RATE_LIMITED"
    assert result["details"]["retryAfter"] > 0


async def test_list_upcoming_by_phone(dispatcher, salon, make_appointment):
    appointment = make_appointment(local(MONDAY, "10:00"))

    result = await dispatcher.dispatch(salon.id, "listUpcomingAppointments", {"phone": "(11) 98765-4321"})

    assert [a["appointmentId"] for a in result["data"]] == [appointment.id]


async def test_professional_rules(dispatcher, salon, professional):
    result = await dispatcher.dispatch(
        salon.id, "getProfessionalAvailabilityRules", {"professionalId": professional.id}
    )

    assert result["data"]["workingDays"] == ["Segunda", "Quarta"]
    assert len(result["data"]["rules"]) == 3
