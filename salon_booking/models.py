"""
Booking models - salons, professionals, services, availability and appointments
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

from .config import DEFAULT_TIMEZONE
from .database import Base

# Appointment statuses
STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
STATUS_COMPLETED = "completed"
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)
TERMINAL_STATUSES = (STATUS_CANCELLED, STATUS_COMPLETED)

# Sync bookkeeping
SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"

_ACTIVE_SQL = "status IN ('pending', 'confirmed')"


def generate_id() -> str:
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    SQLite drops tzinfo on the way back, so values are re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime cannot be stored, normalize it first")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Salon(Base):
    __tablename__ = "salons"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=False, default=DEFAULT_TIMEZONE)
    owner_id = Column(String(36), nullable=True)
    # Single-professional tier, enables the work_hours fallback
    is_solo = Column(Boolean, default=False, nullable=False)
    # {"1": {"start": "09:00", "end": "18:00"}, ...} keyed by day of week, 0 = Sunday
    work_hours = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    professionals = relationship("Professional", back_populates="salon")
    services = relationship("Service", back_populates="salon")


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # External calendars
    google_calendar_id = Column(String(500), nullable=True)
    trinks_professional_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    salon = relationship("Salon", back_populates="professionals")
    availability_rules = relationship(
        "AvailabilityRule",
        back_populates="professional",
        cascade="all, delete-orphan",
    )


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True, index=True)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    price = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    trinks_service_id = Column(String(100), nullable=True)

    salon = relationship("Salon", back_populates="services")

    __table_args__ = (CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),)


class AvailabilityRule(Base):
    """Weekly working interval (or break) for a professional"""

    __tablename__ = "availability_rules"

    id = Column(String(36), primary_key=True, default=generate_id)
    professional_id = Column(String(36), ForeignKey("professionals.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    sequence = Column(Integer, nullable=False, default=0)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_break = Column(Boolean, default=False, nullable=False)

    professional = relationship("Professional", back_populates="availability_rules")

    __table_args__ = (
        UniqueConstraint("professional_id", "day_of_week", "sequence", name="uq_rule_day_sequence"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_rule_day_of_week"),
        CheckConstraint("end_time > start_time", name="ck_rule_interval"),
    )


class ScheduleOverride(Base):
    """Blocked period (vacation, holiday). Salon-wide when professional_id is null."""

    __tablename__ = "schedule_overrides"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False, index=True)
    professional_id = Column(String(36), ForeignKey("professionals.id"), nullable=True)
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    reason = Column(String(255), nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False)
    professional_id = Column(String(36), ForeignKey("professionals.id"), nullable=False)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)

    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_CONFIRMED)
    notes = Column(Text, nullable=True)

    # External references, written back by the sync coordinator
    google_event_id = Column(String(255), nullable=True)
    trinks_event_id = Column(String(255), nullable=True)
    sync_status = Column(String(20), nullable=False, default=SYNC_PENDING)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    customer = relationship("Customer")
    professional = relationship("Professional")
    service = relationship("Service")

    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_appointments_interval"),
        Index("ix_appointments_professional_interval", "professional_id", "starts_at", "ends_at"),
        Index("ix_appointments_customer_salon", "customer_id", "salon_id"),
        # Last line of defence against double booking the same start
        Index(
            "uq_appointments_professional_start_active",
            "professional_id",
            "starts_at",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
    )


# Interval exclusion for active appointments (Postgres only)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL(
        "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_professional_overlap "
        "EXCLUDE USING gist (professional_id WITH =, tstzrange(starts_at, ends_at) WITH &&) "
        f"WHERE ({_ACTIVE_SQL})"
    ).execute_if(dialect="postgresql"),
)
