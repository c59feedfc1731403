"""Booking service - appointment lifecycle (create, update, reschedule, cancel, complete)"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import RESCHEDULE_SLOT_TOLERANCE_SECONDS
from ...integrations.base import SyncOperation, SyncReport
from ...models import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    SYNC_PENDING,
    TERMINAL_STATUSES,
    Appointment,
    Customer,
    Professional,
    Service,
)
from ...models_integrations import PROVIDER_GOOGLE, PROVIDER_TRINKS
from ...shared.datetime_utils import get_zone, normalize_instant, to_iso, utcnow
from .availability_service import AvailabilityService, require_id
from .conflicts import ConflictChecker
from .errors import (
    AppointmentConflictError,
    AppointmentNotFoundError,
    AppointmentTerminalStateError,
    CustomerNotFoundError,
    InvalidIntervalError,
    MissingIdentifierError,
    ServiceNotBookableError,
    ServiceNotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from .repository import SchedulingRepository
from .schemas import (
    AppointmentCreate,
    AppointmentResult,
    AppointmentUpdate,
    CancelResult,
    RescheduleResult,
    UpcomingAppointment,
)

logger = logging.getLogger(__name__)

# Constraint names surfaced by the database when two active appointments collide
CONFLICT_CONSTRAINT_MARKERS = (
    "uq_appointments_professional_start_active",
    "ex_appointments_professional_overlap",
    "appointments.professional_id, appointments.starts_at",
)


class BookingService:
    """Service layer for the appointment lifecycle"""

    def __init__(self, db: Session, sync_coordinator=None):
        self.db = db
        self.repo = SchedulingRepository()
        self.conflicts = ConflictChecker(db)
        self.availability = AvailabilityService(db, sync_coordinator)
        self.sync_coordinator = sync_coordinator

    # ========================================================================
    # HELPERS
    # ========================================================================

    def get_appointment(self, salon_id: str, appointment_id: str) -> Appointment:
        appointment = self.repo.get_appointment(self.db, salon_id, require_id(appointment_id, "appointmentId"))
        if not appointment:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def _get_customer(self, salon_id: str, customer_id: str) -> Customer:
        customer = self.repo.get_customer(self.db, salon_id, require_id(customer_id, "customerId"))
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _get_bookable_service(self, salon_id: str, service_id: str) -> Service:
        service = self.repo.get_service(self.db, salon_id, require_id(service_id, "serviceId"))
        if not service:
            raise ServiceNotFoundError(service_id)
        if not service.is_active:
            raise ServiceNotBookableError(service_id)
        return service

    def _ensure_no_conflict(
        self, professional: Professional, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ):
        conflict = self.conflicts.find_conflict(professional.id, start, end, exclude_id)
        if conflict:
            raise AppointmentConflictError(conflict.id, conflict.starts_at, conflict.ends_at)

    def _commit(self, flush_only: bool = False):
        """Commit (or only flush), reporting constraint-level double booking as a conflict"""
        try:
            if flush_only:
                self.db.flush()
            else:
                self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if any(marker in str(e.orig) for marker in CONFLICT_CONSTRAINT_MARKERS):
                logger.warning(f"⚠️ Database rejected overlapping appointment: {e.orig}")
                raise AppointmentConflictError() from e
            raise

    def _schedule_sync(self, operation: SyncOperation, appointment_id: str):
        if self.sync_coordinator is not None:
            self.sync_coordinator.schedule(operation, appointment_id)

    async def _delete_external(self, appointment: Appointment) -> Optional[SyncReport]:
        if self.sync_coordinator is None:
            return None
        return await self.sync_coordinator.delete_before_cancel(self.db, appointment)

    async def _delete_late_references(
        self, appointment: Appointment, known: tuple[Optional[str], Optional[str]]
    ) -> Optional[SyncReport]:
        """
        Delete external ids a background sync wrote back while the appointment
        was being cancelled. Runs after the cancellation is committed, so any
        later write-back sees the cancelled status and cleans up on its own.
        """
        if self.sync_coordinator is None:
            return None
        self.db.refresh(appointment)
        current = (appointment.google_event_id, appointment.trinks_event_id)
        if all(ref is None or ref == before for ref, before in zip(current, known)):
            return None

        logger.warning(f"⚠️ Appointment {appointment.id} got external ids while cancelling, deleting them")
        report = await self._delete_external(appointment)
        self._clear_deleted_references(appointment, report)
        self._commit()
        return report

    @staticmethod
    def _clear_deleted_references(appointment: Appointment, report: Optional[SyncReport]):
        """Forget external ids only for providers that confirmed the delete"""
        if report is None:
            return
        if report.succeeded(PROVIDER_GOOGLE):
            appointment.google_event_id = None
        if report.succeeded(PROVIDER_TRINKS):
            appointment.trinks_event_id = None

    # ========================================================================
    # CREATE
    # ========================================================================

    async def create_appointment(self, salon_id: str, data: AppointmentCreate) -> AppointmentResult:
        """Create a confirmed appointment. Never retried automatically."""
        logger.info(f"📥 Creating appointment for salon {salon_id}")

        salon = self.availability.get_salon(salon_id)
        professional = self.availability.get_professional(salon.id, data.professionalId)
        customer = self._get_customer(salon.id, data.customerId)
        service = self._get_bookable_service(salon.id, data.serviceId)

        start = normalize_instant(data.date, salon.timezone)
        if data.endDate:
            end = normalize_instant(data.endDate, salon.timezone)
        else:
            end = start + timedelta(minutes=service.duration_minutes)
        if end <= start:
            raise InvalidIntervalError(start, end)

        self._ensure_no_conflict(professional, start, end)

        now = utcnow()
        appointment = self.repo.add_appointment(
            self.db,
            salon_id=salon.id,
            customer_id=customer.id,
            professional_id=professional.id,
            service_id=service.id,
            starts_at=start,
            ends_at=end,
            status=STATUS_CONFIRMED,
            notes=data.notes,
            sync_status=SYNC_PENDING,
            created_at=now,
            updated_at=now,
        )
        self._commit()
        logger.info(f"✅ Appointment {appointment.id} created for professional {professional.id}")

        self._schedule_sync(SyncOperation.CREATE, appointment.id)
        return AppointmentResult(
            appointmentId=appointment.id,
            message=f"Appointment confirmed for {to_iso(start, salon.timezone)}",
        )

    # ========================================================================
    # UPDATE
    # ========================================================================

    async def update_appointment(
        self, salon_id: str, appointment_id: str, data: AppointmentUpdate
    ) -> AppointmentResult:
        """
        Update professional, service, start or notes

        The final (professional, start, end) is checked once, as a whole,
        before anything is written. A service change recomputes the end from
        the new service duration; otherwise the current duration is kept.
        """
        appointment = self.get_appointment(salon_id, appointment_id)
        if appointment.status in TERMINAL_STATUSES:
            raise AppointmentTerminalStateError(appointment.id, appointment.status)

        salon = self.availability.get_salon(appointment.salon_id)

        professional = appointment.professional
        if data.professionalId and data.professionalId != appointment.professional_id:
            professional = self.availability.get_professional(salon.id, data.professionalId)

        service = appointment.service
        service_changed = bool(data.serviceId and data.serviceId != appointment.service_id)
        if service_changed:
            service = self._get_bookable_service(salon.id, data.serviceId)

        start = normalize_instant(data.date, salon.timezone) if data.date else appointment.starts_at
        if service_changed:
            end = start + timedelta(minutes=service.duration_minutes)
        else:
            end = start + (appointment.ends_at - appointment.starts_at)

        interval_changed = (
            professional.id != appointment.professional_id
            or service_changed
            or start != appointment.starts_at
        )
        if interval_changed:
            self._ensure_no_conflict(professional, start, end, exclude_id=appointment.id)

        appointment.professional_id = professional.id
        appointment.service_id = service.id
        appointment.starts_at = start
        appointment.ends_at = end
        if data.notes is not None:
            appointment.notes = data.notes
        appointment.sync_status = SYNC_PENDING
        appointment.updated_at = utcnow()
        self._commit()
        logger.info(f"✅ Appointment {appointment.id} updated")

        self._schedule_sync(SyncOperation.UPDATE, appointment.id)
        return AppointmentResult(appointmentId=appointment.id, message="Appointment updated")

    # ========================================================================
    # RESCHEDULE
    # ========================================================================

    async def reschedule_appointment(
        self, salon_id: str, appointment_id: str, new_date: str
    ) -> RescheduleResult:
        """Cancel the appointment and book a confirmed copy at a freshly generated slot"""
        appointment = self.get_appointment(salon_id, appointment_id)
        if appointment.status in TERMINAL_STATUSES:
            raise AppointmentTerminalStateError(appointment.id, appointment.status)

        salon = self.availability.get_salon(appointment.salon_id)
        professional = appointment.professional
        service = appointment.service
        requested = normalize_instant(new_date, salon.timezone)
        day = requested.astimezone(get_zone(salon.timezone)).date()

        result = await self.availability.generate_slots(
            salon,
            professional,
            day,
            service.duration_minutes,
            exclude_appointment_id=appointment.id,
        )
        tolerance = RESCHEDULE_SLOT_TOLERANCE_SECONDS
        slot = next((s for s in result.slots if abs((s - requested).total_seconds()) <= tolerance), None)
        if slot is None:
            raise SlotUnavailableError(requested)

        # Both rows go to the database before any external call, so a
        # concurrent booking fails here and the old event is left alone
        now = utcnow()
        appointment.status = STATUS_CANCELLED
        appointment.updated_at = now
        # Old row must leave the active set before the new one is inserted
        self.db.flush()
        new_appointment = self.repo.add_appointment(
            self.db,
            salon_id=appointment.salon_id,
            customer_id=appointment.customer_id,
            professional_id=professional.id,
            service_id=service.id,
            starts_at=slot,
            ends_at=slot + timedelta(minutes=service.duration_minutes),
            status=STATUS_CONFIRMED,
            notes=f"Rescheduled from appointment {appointment.id}",
            sync_status=SYNC_PENDING,
            created_at=now,
            updated_at=now,
        )
        self._commit(flush_only=True)

        known = (appointment.google_event_id, appointment.trinks_event_id)
        report = await self._delete_external(appointment)
        self._clear_deleted_references(appointment, report)
        self._commit()
        report = await self._delete_late_references(appointment, known) or report
        logger.info(f"✅ Appointment {appointment.id} rescheduled as {new_appointment.id}")

        self._schedule_sync(SyncOperation.CREATE, new_appointment.id)
        return RescheduleResult(
            appointmentId=new_appointment.id,
            message=f"Appointment rescheduled to {to_iso(slot, salon.timezone)}",
            googleSyncSuccess=report.succeeded(PROVIDER_GOOGLE) if report else None,
            trinksSyncSuccess=report.succeeded(PROVIDER_TRINKS) if report else None,
        )

    # ========================================================================
    # CANCEL / COMPLETE
    # ========================================================================

    async def cancel_appointment(
        self, salon_id: str, appointment_id: str, reason: Optional[str] = None
    ) -> CancelResult:
        """
        Cancel an appointment. Idempotent: a cancelled appointment is left untouched.

        External copies are deleted first; a provider failure is reported in
        the result flags and never blocks the local cancellation.
        """
        appointment = self.get_appointment(salon_id, appointment_id)
        if appointment.status == STATUS_CANCELLED:
            return CancelResult(message="Appointment was already cancelled", cancelled=True, alreadyCancelled=True)
        if appointment.status == STATUS_COMPLETED:
            raise AppointmentTerminalStateError(appointment.id, appointment.status)

        known = (appointment.google_event_id, appointment.trinks_event_id)
        report = await self._delete_external(appointment)

        appointment.status = STATUS_CANCELLED
        if reason:
            entry = f"[Cancelled] {reason}"
            appointment.notes = f"{appointment.notes}\n{entry}" if appointment.notes else entry
        self._clear_deleted_references(appointment, report)
        appointment.updated_at = utcnow()
        self._commit()
        report = await self._delete_late_references(appointment, known) or report
        logger.info(f"✅ Appointment {appointment.id} cancelled")

        return CancelResult(
            message="Appointment cancelled",
            cancelled=True,
            googleSyncSuccess=report.succeeded(PROVIDER_GOOGLE) if report else None,
            trinksSyncSuccess=report.succeeded(PROVIDER_TRINKS) if report else None,
        )

    async def complete_appointment(self, salon_id: str, appointment_id: str) -> AppointmentResult:
        appointment = self.get_appointment(salon_id, appointment_id)
        if appointment.status in TERMINAL_STATUSES:
            raise AppointmentTerminalStateError(appointment.id, appointment.status)

        appointment.status = STATUS_COMPLETED
        appointment.updated_at = utcnow()
        self._commit()

        self._schedule_sync(SyncOperation.UPDATE, appointment.id)
        return AppointmentResult(appointmentId=appointment.id, message="Appointment completed")

    # ========================================================================
    # QUERIES
    # ========================================================================

    def list_upcoming(
        self, salon_id: str, customer_id: Optional[str] = None, phone: Optional[str] = None
    ) -> list[UpcomingAppointment]:
        """Active appointments after now for a customer (by id or phone), soonest first"""
        salon = self.availability.get_salon(salon_id)
        if customer_id:
            customer_ids = [self._get_customer(salon.id, customer_id).id]
        elif phone:
            try:
                customers = self.repo.find_customers_by_phone(self.db, salon.id, phone)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            customer_ids = [c.id for c in customers]
        else:
            raise MissingIdentifierError("customerId")

        appointments = self.repo.list_upcoming(self.db, salon.id, customer_ids, utcnow())
        return [
            UpcomingAppointment(
                appointmentId=a.id,
                startInstant=to_iso(a.starts_at, salon.timezone),
                endInstant=to_iso(a.ends_at, salon.timezone),
                serviceName=a.service.name if a.service else None,
                professionalName=a.professional.name if a.professional else None,
                status=a.status,
            )
            for a in appointments
        ]
