import os
from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA=")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-secret")

from salon_booking import models, models_integrations  # noqa: E402,F401
from salon_booking.database import Base  # noqa: E402
from salon_booking.integrations.tokens import encrypt_token  # noqa: E402
from salon_booking.models import (  # noqa: E402
    STATUS_CONFIRMED,
    Appointment,
    AvailabilityRule,
    Customer,
    Professional,
    Salon,
    Service,
)
from salon_booking.models_integrations import SalonIntegration  # noqa: E402

# Sunday 2026-03-01 09:00 in America/Sao_Paulo (UTC-3)
FROZEN_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = "2026-03-02"
WEDNESDAY = "2026-03-04"
SAO_PAULO_OFFSET = timezone(timedelta(hours=-3))


def local(day: str, hhmm: str) -> datetime:
    """Aware instant for a Sao Paulo wall-clock time"""
    hours, minutes = hhmm.split(":")
    return datetime.fromisoformat(day).replace(hour=int(hours), minute=int(minutes), tzinfo=SAO_PAULO_OFFSET)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    frozen = FrozenClock(FROZEN_NOW)
    for module in (
        "salon_booking.shared.datetime_utils",
        "salon_booking.domain.scheduling.availability_service",
        "salon_booking.domain.scheduling.booking_service",
        "salon_booking.integrations.tokens",
    ):
        monkeypatch.setattr(f"{module}.utcnow", frozen)
    return frozen


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# SEED DATA
# ============================================================================


@pytest.fixture
def salon(db):
    salon = Salon(name="Studio Bela", timezone="America/Sao_Paulo", owner_id=models.generate_id())
    db.add(salon)
    db.commit()
    return salon


@pytest.fixture
def professional(db, salon):
    """Works Monday 09:00-18:00 and Wednesday 09:00-18:00 with a 12:00-13:00 break"""
    professional = Professional(salon_id=salon.id, name="Ana", email="ana@studiobela.com")
    db.add(professional)
    db.flush()
    db.add_all(
        [
            AvailabilityRule(
                professional_id=professional.id, day_of_week=1, sequence=0, start_time=time(9), end_time=time(18)
            ),
            AvailabilityRule(
                professional_id=professional.id, day_of_week=3, sequence=0, start_time=time(9), end_time=time(18)
            ),
            AvailabilityRule(
                professional_id=professional.id,
                day_of_week=3,
                sequence=1,
                start_time=time(12),
                end_time=time(13),
                is_break=True,
            ),
        ]
    )
    db.commit()
    return professional


@pytest.fixture
def service(db, salon):
    service = Service(salon_id=salon.id, name="Corte", duration_minutes=60, trinks_service_id="srv-10")
    db.add(service)
    db.commit()
    return service


@pytest.fixture
def short_service(db, salon):
    service = Service(salon_id=salon.id, name="Escova", duration_minutes=30)
    db.add(service)
    db.commit()
    return service


@pytest.fixture
def customer(db, salon):
    customer = Customer(salon_id=salon.id, name="Maria Silva", phone="+55 11 98765-4321", email="maria@example.com")
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def make_appointment(db, salon, professional, service, customer):
    def _make(start: datetime, minutes: int = 60, status: str = STATUS_CONFIRMED, **fields) -> Appointment:
        appointment = Appointment(
            salon_id=salon.id,
            customer_id=customer.id,
            professional_id=fields.pop("professional_id", professional.id),
            service_id=service.id,
            starts_at=start,
            ends_at=start + timedelta(minutes=minutes),
            status=status,
            **fields,
        )
        db.add(appointment)
        db.commit()
        return appointment

    return _make


@pytest.fixture
def make_integration(db, salon):
    def _make(provider: str, is_active: bool = True, expires_in: timedelta = timedelta(hours=1), **fields):
        integration = SalonIntegration(
            salon_id=salon.id,
            provider=provider,
            is_active=is_active,
            access_token=encrypt_token(f"{provider}-access"),
            refresh_token=encrypt_token(f"{provider}-refresh"),
            token_expires_at=FROZEN_NOW + expires_in,
            **fields,
        )
        db.add(integration)
        db.commit()
        return integration

    return _make
