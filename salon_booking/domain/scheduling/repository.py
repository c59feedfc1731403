"""Scheduling repository - Database operations for availability and appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ...models import (
    ACTIVE_STATUSES,
    Appointment,
    AvailabilityRule,
    Customer,
    Professional,
    Salon,
    ScheduleOverride,
    Service,
)
from ...shared.validators import phone_suffix


def _stored_suffix(phone: str) -> Optional[str]:
    """Suffix of a stored phone, None when the stored value is too short to compare"""
    try:
        return phone_suffix(phone)
    except ValueError:
        return None


class AvailabilityRepository:
    """Read-only access to weekly rules and blocked periods"""

    @staticmethod
    def get_rules(db: Session, professional_id: str, day_of_week: Optional[int] = None) -> list[AvailabilityRule]:
        query = db.query(AvailabilityRule).filter(AvailabilityRule.professional_id == professional_id)
        if day_of_week is not None:
            query = query.filter(AvailabilityRule.day_of_week == day_of_week)
        return query.order_by(
            AvailabilityRule.day_of_week, AvailabilityRule.sequence, AvailabilityRule.start_time
        ).all()

    @staticmethod
    def get_working_days(db: Session, professional_id: str) -> list[int]:
        """Days with at least one work (non-break) interval"""
        rows = (
            db.query(AvailabilityRule.day_of_week)
            .filter(
                AvailabilityRule.professional_id == professional_id,
                AvailabilityRule.is_break.is_(False),
            )
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    @staticmethod
    def get_overrides(
        db: Session, salon_id: str, professional_id: str, start: datetime, end: datetime
    ) -> list[ScheduleOverride]:
        return (
            db.query(ScheduleOverride)
            .filter(
                ScheduleOverride.salon_id == salon_id,
                or_(
                    ScheduleOverride.professional_id.is_(None),
                    ScheduleOverride.professional_id == professional_id,
                ),
                ScheduleOverride.starts_at < end,
                ScheduleOverride.ends_at > start,
            )
            .all()
        )


class SchedulingRepository:
    """Repository for salon entities and appointments"""

    @staticmethod
    def get_salon(db: Session, salon_id: str) -> Optional[Salon]:
        return db.query(Salon).filter(Salon.id == salon_id).first()

    @staticmethod
    def get_professional(db: Session, salon_id: str, professional_id: str) -> Optional[Professional]:
        return (
            db.query(Professional)
            .filter(Professional.id == professional_id, Professional.salon_id == salon_id)
            .first()
        )

    @staticmethod
    def get_service(db: Session, salon_id: str, service_id: str) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id, Service.salon_id == salon_id).first()

    @staticmethod
    def get_customer(db: Session, salon_id: str, customer_id: str) -> Optional[Customer]:
        return db.query(Customer).filter(Customer.id == customer_id, Customer.salon_id == salon_id).first()

    @staticmethod
    def find_customers_by_phone(db: Session, salon_id: str, phone: str) -> list[Customer]:
        """Match on the trailing digits so country code and formatting do not matter"""
        suffix = phone_suffix(phone)
        candidates = (
            db.query(Customer)
            .filter(Customer.salon_id == salon_id, Customer.phone.isnot(None))
            .filter(Customer.phone.like(f"%{suffix[-4:]}"))
            .all()
        )
        return [c for c in candidates if _stored_suffix(c.phone) == suffix]

    @staticmethod
    def get_appointment(db: Session, salon_id: str, appointment_id: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.salon_id == salon_id)
            .first()
        )

    @staticmethod
    def add_appointment(db: Session, **appointment_data) -> Appointment:
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        return appointment

    @staticmethod
    def list_upcoming(
        db: Session, salon_id: str, customer_ids: list[str], after: datetime
    ) -> list[Appointment]:
        if not customer_ids:
            return []
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.service), joinedload(Appointment.professional))
            .filter(
                Appointment.salon_id == salon_id,
                Appointment.customer_id.in_(customer_ids),
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.starts_at > after,
            )
            .order_by(Appointment.starts_at.asc())
            .all()
        )
