"""Availability service - free slot generation for a professional on a given day"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from sqlalchemy.orm import Session

from ...config import DEFAULT_SERVICE_DURATION_MINUTES, SLOT_STEP_MINUTES
from ...models import Professional, Salon
from ...shared.datetime_utils import (
    combine_local,
    day_name,
    day_of_week,
    local_day_bounds,
    parse_hhmm,
    parse_local_date,
    to_iso,
    today_local,
    utcnow,
)
from ...shared.validators import validate_uuid
from .conflicts import ConflictChecker, overlaps_any
from .errors import (
    MissingIdentifierError,
    NoAvailabilityRulesError,
    PastDateError,
    ProfessionalNotAvailableThisDayError,
    ProfessionalNotFoundError,
    SalonNotFoundError,
    ServiceNotFoundError,
    ValidationError,
)
from .repository import AvailabilityRepository, SchedulingRepository
from .schemas import AvailabilityResponse, AvailabilityRuleResponse, ProfessionalRulesResponse

logger = logging.getLogger(__name__)


@dataclass
class DaySchedule:
    """Working and break intervals for one professional on one local day"""

    work: list[tuple[time, time]] = field(default_factory=list)
    breaks: list[tuple[time, time]] = field(default_factory=list)


@dataclass
class AvailabilityResult:
    day: date
    duration_minutes: int
    slots: list[datetime]
    total_available: int


def require_id(value: Optional[str], field_name: str) -> str:
    if not value or not validate_uuid(value):
        raise MissingIdentifierError(field_name)
    return value


class AvailabilityService:
    """Service layer for slot generation"""

    def __init__(self, db: Session, sync_coordinator=None):
        self.db = db
        self.repo = SchedulingRepository()
        self.rules = AvailabilityRepository()
        self.conflicts = ConflictChecker(db)
        self.sync_coordinator = sync_coordinator

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def get_salon(self, salon_id: str) -> Salon:
        salon = self.repo.get_salon(self.db, require_id(salon_id, "salonId"))
        if not salon:
            raise SalonNotFoundError(salon_id)
        return salon

    def get_professional(self, salon_id: str, professional_id: str) -> Professional:
        professional = self.repo.get_professional(
            self.db, salon_id, require_id(professional_id, "professionalId")
        )
        if not professional:
            raise ProfessionalNotFoundError(professional_id)
        return professional

    def resolve_duration(
        self, salon_id: str, service_id: Optional[str] = None, duration_minutes: Optional[int] = None
    ) -> int:
        """Explicit duration wins, then the service's, then the default"""
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise ValidationError("durationMinutes must be positive")
            return duration_minutes
        if service_id:
            service = self.repo.get_service(self.db, salon_id, require_id(service_id, "serviceId"))
            if not service:
                raise ServiceNotFoundError(service_id)
            return service.duration_minutes
        return DEFAULT_SERVICE_DURATION_MINUTES

    # ========================================================================
    # RULES
    # ========================================================================

    def resolve_day_schedule(self, salon: Salon, professional: Professional, day: date) -> DaySchedule:
        dow = day_of_week(day)
        rules = self.rules.get_rules(self.db, professional.id, dow)
        schedule = DaySchedule(
            work=[(r.start_time, r.end_time) for r in rules if not r.is_break],
            breaks=[(r.start_time, r.end_time) for r in rules if r.is_break],
        )
        if schedule.work:
            return schedule

        working_days = self.rules.get_working_days(self.db, professional.id)
        if working_days:
            raise ProfessionalNotAvailableThisDayError(day_name(dow), [day_name(d) for d in working_days])

        if salon.is_solo and professional.user_id and professional.user_id == salon.owner_id:
            return self._solo_fallback(salon, professional, dow)

        raise NoAvailabilityRulesError(professional.id)

    def _solo_fallback(self, salon: Salon, professional: Professional, dow: int) -> DaySchedule:
        """Single-professional salons without rules use the salon's opening hours"""
        work_hours = salon.work_hours or {}
        open_days = sorted(
            int(key) for key, hours in work_hours.items() if hours and hours.get("start") and hours.get("end")
        )
        if not open_days:
            raise NoAvailabilityRulesError(professional.id)

        hours = work_hours.get(str(dow)) or work_hours.get(dow)
        if dow not in open_days or not hours:
            raise ProfessionalNotAvailableThisDayError(day_name(dow), [day_name(d) for d in open_days])

        logger.info(f"ℹ️ Using salon work hours for solo professional {professional.id}")
        return DaySchedule(work=[(parse_hhmm(hours["start"]), parse_hhmm(hours["end"]))])

    # ========================================================================
    # SLOTS
    # ========================================================================

    async def generate_slots(
        self,
        salon: Salon,
        professional: Professional,
        day: date,
        duration_minutes: int,
        limit: Optional[int] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Free start instants on a local day, in 15 minute steps

        A slot [t, t + duration) must fit inside a work interval, start at or
        after now, and overlap no break, active appointment, blocked period or
        external busy period.
        """
        tz_name = salon.timezone
        if day < today_local(tz_name):
            raise PastDateError(day.isoformat())

        schedule = self.resolve_day_schedule(salon, professional, day)
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=SLOT_STEP_MINUTES)
        now = utcnow()

        breaks = [(combine_local(day, s, tz_name), combine_local(day, e, tz_name)) for s, e in schedule.breaks]
        candidates: set[datetime] = set()
        for work_start, work_end in schedule.work:
            cursor = combine_local(day, work_start, tz_name)
            interval_end = combine_local(day, work_end, tz_name)
            while cursor + duration <= interval_end:
                if cursor >= now and not overlaps_any(cursor, cursor + duration, breaks):
                    candidates.add(cursor)
                cursor += step

        busy = await self._busy_intervals(salon, professional, day, exclude_appointment_id)
        slots = sorted(t for t in candidates if not overlaps_any(t, t + duration, busy))

        total = len(slots)
        if limit is not None:
            slots = slots[:limit]

        logger.info(
            f"📅 {total} slots for professional {professional.id} on {day.isoformat()} "
            f"({duration_minutes}min)"
        )
        return AvailabilityResult(day=day, duration_minutes=duration_minutes, slots=slots, total_available=total)

    async def _busy_intervals(
        self,
        salon: Salon,
        professional: Professional,
        day: date,
        exclude_appointment_id: Optional[str] = None,
    ) -> list[tuple[datetime, datetime]]:
        day_start, day_end = local_day_bounds(day, salon.timezone)

        busy = [
            (a.starts_at, a.ends_at)
            for a in self.conflicts.active_in_range(professional.id, day_start, day_end, exclude_appointment_id)
        ]
        busy.extend(
            (o.starts_at, o.ends_at)
            for o in self.rules.get_overrides(self.db, salon.id, professional.id, day_start, day_end)
        )
        if self.sync_coordinator is not None:
            external = await self.sync_coordinator.get_busy_periods(self.db, professional, day_start, day_end)
            busy.extend((p.start, p.end) for p in external)
        return busy

    async def check_availability(
        self,
        salon_id: str,
        professional_id: str,
        date_value: Union[str, date, datetime, None],
        service_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> AvailabilityResponse:
        salon = self.get_salon(salon_id)
        professional = self.get_professional(salon.id, professional_id)
        day = parse_local_date(date_value, salon.timezone)
        duration = self.resolve_duration(salon.id, service_id, duration_minutes)

        result = await self.generate_slots(salon, professional, day, duration, limit=limit)

        if result.total_available == 0:
            message = f"No available slots for {professional.name} on {day.isoformat()}"
        else:
            message = f"{result.total_available} available slot(s) for {professional.name} on {day.isoformat()}"

        return AvailabilityResponse(
            slots=[to_iso(slot, salon.timezone) for slot in result.slots],
            totalAvailable=result.total_available,
            message=message,
            date=day.isoformat(),
            professionalId=professional.id,
            durationMinutes=duration,
        )

    def get_professional_rules(self, salon_id: str, professional_id: str) -> ProfessionalRulesResponse:
        salon = self.get_salon(salon_id)
        professional = self.get_professional(salon.id, professional_id)
        rules = self.rules.get_rules(self.db, professional.id)
        return ProfessionalRulesResponse(
            professionalId=professional.id,
            professionalName=professional.name,
            workingDays=[day_name(d) for d in self.rules.get_working_days(self.db, professional.id)],
            rules=[
                AvailabilityRuleResponse(
                    dayOfWeek=r.day_of_week,
                    dayName=day_name(r.day_of_week),
                    sequence=r.sequence,
                    startTime=r.start_time.strftime("%H:%M"),
                    endTime=r.end_time.strftime("%H:%M"),
                    isBreak=r.is_break,
                )
                for r in rules
            ],
        )
