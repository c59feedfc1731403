"""
Conflict checking

intervals_overlap() is the one overlap rule used everywhere: slot filtering,
create, update and reschedule. overlap_clause() is the same predicate in SQL.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import ACTIVE_STATUSES, Appointment

logger = logging.getLogger(__name__)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [a_start, a_end) and [b_start, b_end) intersect"""
    return a_start < b_end and a_end > b_start


def overlaps_any(start: datetime, end: datetime, intervals: Iterable[tuple[datetime, datetime]]) -> bool:
    return any(intervals_overlap(start, end, b_start, b_end) for b_start, b_end in intervals)


def overlap_clause(start: datetime, end: datetime):
    return (Appointment.starts_at < end) & (Appointment.ends_at > start)


class ConflictChecker:
    """Finds active appointments of a professional intersecting an interval"""

    def __init__(self, db: Session):
        self.db = db

    def active_in_range(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.professional_id == professional_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            overlap_clause(start, end),
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.starts_at).all()

    def find_conflict(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        for appointment in self.active_in_range(professional_id, start, end, exclude_id):
            # SQL already filtered, re-check with the Python predicate so both agree
            if intervals_overlap(start, end, appointment.starts_at, appointment.ends_at):
                logger.info(
                    f"⚠️ Conflict for professional {professional_id}: "
                    f"{start.isoformat()} overlaps appointment {appointment.id}"
                )
                return appointment
        return None
