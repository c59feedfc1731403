from datetime import date, timedelta

import pytest

from salon_booking.domain.scheduling.availability_service import AvailabilityService
from salon_booking.domain.scheduling.errors import (
    InvalidDateError,
    NoAvailabilityRulesError,
    PastDateError,
    ProfessionalNotAvailableThisDayError,
)
from salon_booking.integrations.base import BusyPeriod
from salon_booking.models import STATUS_CANCELLED, Professional, ScheduleOverride

from .conftest import MONDAY, WEDNESDAY, local


class FakeBusyCoordinator:
    def __init__(self, periods):
        self.periods = periods
        self.calls = 0

    async def get_busy_periods(self, db, professional, start, end):
        self.calls += 1
        return self.periods


async def generate(db, salon, professional, day: str, minutes: int = 60, **kwargs):
    return await AvailabilityService(db, kwargs.pop("sync_coordinator", None)).generate_slots(
        salon, professional, date.fromisoformat(day), minutes, **kwargs
    )


class TestGenerateSlots:
    async def test_monday_full_day_in_fifteen_minute_steps(self, db, salon, professional):
        result = await generate(db, salon, professional, MONDAY)

        assert result.slots[0] == local(MONDAY, "09:00")
        assert result.slots[1] == local(MONDAY, "09:15")
        assert result.slots[-1] == local(MONDAY, "17:00")
        assert result.total_available == 33

    async def test_slots_fit_inside_the_work_interval(self, db, salon, professional):
        result = await generate(db, salon, professional, MONDAY, minutes=90)

        for slot in result.slots:
            assert slot >= local(MONDAY, "09:00")
            assert slot + timedelta(minutes=90) <= local(MONDAY, "18:00")
        assert result.slots[-1] == local(MONDAY, "16:30")

    async def test_break_is_never_overlapped(self, db, salon, professional):
        result = await generate(db, salon, professional, WEDNESDAY)

        break_start, break_end = local(WEDNESDAY, "12:00"), local(WEDNESDAY, "13:00")
        for slot in result.slots:
            assert not (slot < break_end and slot + timedelta(hours=1) > break_start)
        assert local(WEDNESDAY, "11:00") in result.slots
        assert local(WEDNESDAY, "13:00") in result.slots
        assert result.total_available == 26

    async def test_booked_window_is_excluded(self, db, salon, professional, make_appointment):
        make_appointment(local(MONDAY, "09:00"))

        result = await generate(db, salon, professional, MONDAY)

        assert result.slots[0] == local(MONDAY, "10:00")
        assert local(MONDAY, "09:15") not in result.slots

    async def test_cancelled_appointments_free_their_window(self, db, salon, professional, make_appointment):
        make_appointment(local(MONDAY, "09:00"), status=STATUS_CANCELLED)

        result = await generate(db, salon, professional, MONDAY)

        assert result.slots[0] == local(MONDAY, "09:00")

    async def test_exclude_appointment_keeps_its_own_window(self, db, salon, professional, make_appointment):
        appointment = make_appointment(local(MONDAY, "09:00"))

        result = await generate(db, salon, professional, MONDAY, exclude_appointment_id=appointment.id)

        assert result.slots[0] == local(MONDAY, "09:00")

    async def test_past_starts_are_dropped_today(self, db, salon, professional, clock):
        clock.now = local(MONDAY, "10:20")

        result = await generate(db, salon, professional, MONDAY)

        assert result.slots[0] == local(MONDAY, "10:30")

    async def test_limit_truncates_but_reports_total(self, db, salon, professional):
        result = await generate(db, salon, professional, MONDAY, limit=2)

        assert result.slots == [local(MONDAY, "09:00"), local(MONDAY, "09:15")]
        assert result.total_available == 33

    async def test_blocked_period_removes_slots(self, db, salon, professional):
        db.add(
            ScheduleOverride(
                salon_id=salon.id,
                professional_id=professional.id,
                starts_at=local(MONDAY, "14:00"),
                ends_at=local(MONDAY, "16:00"),
                reason="Dentist",
            )
        )
        db.commit()

        result = await generate(db, salon, professional, MONDAY)

        assert local(MONDAY, "13:00") in result.slots
        assert local(MONDAY, "13:15") not in result.slots
        assert local(MONDAY, "15:45") not in result.slots
        assert local(MONDAY, "16:00") in result.slots

    async def test_salon_wide_closure_applies_to_everyone(self, db, salon, professional):
        db.add(ScheduleOverride(salon_id=salon.id, starts_at=local(MONDAY, "00:00"), ends_at=local(MONDAY, "23:59")))
        db.commit()

        result = await generate(db, salon, professional, MONDAY)

        assert result.slots == []
        assert result.total_available == 0

    async def test_external_busy_periods_are_an_extra_filter(self, db, salon, professional):
        coordinator = FakeBusyCoordinator([BusyPeriod(local(MONDAY, "10:00"), local(MONDAY, "11:00"), "google")])

        result = await generate(db, salon, professional, MONDAY, sync_coordinator=coordinator)

        assert coordinator.calls == 1
        assert local(MONDAY, "09:00") in result.slots
        assert local(MONDAY, "09:15") not in result.slots
        assert local(MONDAY, "10:45") not in result.slots
        assert local(MONDAY, "11:00") in result.slots


class TestDayResolution:
    async def test_day_without_rules_lists_working_days(self, db, salon, professional):
        with pytest.raises(ProfessionalNotAvailableThisDayError) as exc_info:
            await generate(db, salon, professional, "2026-03-03")

        assert exc_info.value.code == "PROFESSIONAL_NOT_AVAILABLE_THIS_DAY"
        assert exc_info.value.working_days == ["Segunda", "Quarta"]

    async def test_past_date_is_rejected(self, db, salon, professional):
        with pytest.raises(PastDateError):
            await generate(db, salon, professional, "2026-02-23")

    async def test_professional_without_any_rules(self, db, salon):
        professional = Professional(salon_id=salon.id, name="Caio")
        db.add(professional)
        db.commit()

        with pytest.raises(NoAvailabilityRulesError):
            await generate(db, salon, professional, MONDAY)

    async def test_solo_salon_falls_back_to_work_hours(self, db, salon):
        salon.is_solo = True
        salon.work_hours = {"2": {"start": "10:00", "end": "12:00"}}
        owner = Professional(salon_id=salon.id, name="Dona", user_id=salon.owner_id)
        db.add(owner)
        db.commit()

        result = await generate(db, salon, owner, "2026-03-03")

        assert result.slots[0] == local("2026-03-03", "10:00")
        assert result.slots[-1] == local("2026-03-03", "11:00")
        assert result.total_available == 5

        with pytest.raises(ProfessionalNotAvailableThisDayError) as exc_info:
            await generate(db, salon, owner, MONDAY)
        assert exc_info.value.working_days == ["Terça"]

    async def test_solo_fallback_only_for_the_owner(self, db, salon):
        salon.is_solo = True
        salon.work_hours = {"1": {"start": "10:00", "end": "12:00"}}
        employee = Professional(salon_id=salon.id, name="Caio", user_id="someone-else")
        db.add(employee)
        db.commit()

        with pytest.raises(NoAvailabilityRulesError):
            await generate(db, salon, employee, MONDAY)


class TestCheckAvailability:
    async def test_response_uses_service_duration_and_iso_offsets(self, db, salon, professional, short_service):
        response = await AvailabilityService(db).check_availability(
            salon.id, professional.id, MONDAY, service_id=short_service.id
        )

        assert response.durationMinutes == 30
        assert response.slots[0] == "2026-03-02T09:00:00-03:00"
        assert response.slots[-1] == "2026-03-02T17:30:00-03:00"
        assert response.totalAvailable == 35
        assert "35 available slot(s)" in response.message

    async def test_default_duration_is_sixty_minutes(self, db, salon, professional):
        response = await AvailabilityService(db).check_availability(salon.id, professional.id, MONDAY, limit=2)

        assert response.durationMinutes == 60
        assert len(response.slots) == 2
        assert response.totalAvailable == 33

    async def test_unparsable_date(self, db, salon, professional):
        with pytest.raises(InvalidDateError):
            await AvailabilityService(db).check_availability(salon.id, professional.id, "02/03/2026")

    def test_professional_rules_listing(self, db, salon, professional):
        rules = AvailabilityService(db).get_professional_rules(salon.id, professional.id)

        assert rules.workingDays == ["Segunda", "Quarta"]
        assert [r.isBreak for r in rules.rules] == [False, False, True]
        assert rules.rules[2].startTime == "12:00"
