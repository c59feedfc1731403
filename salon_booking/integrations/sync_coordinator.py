"""
Integration Sync Coordinator

Mirrors local appointment changes to every active external system. Provider
failures are logged and reported, never raised: the local database stays the
source of truth.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Protocol

import httpx
from sqlalchemy.orm import Session

from ..config import PROVIDER_TIMEOUT_SECONDS, SYNC_TIMEOUT_SECONDS
from ..database import SessionLocal
from ..models import STATUS_CANCELLED, SYNC_FAILED, SYNC_SYNCED, Appointment, Professional
from ..models_integrations import PROVIDER_GOOGLE, PROVIDER_TRINKS, SalonIntegration
from .base import (
    AppointmentPayload,
    BusyPeriod,
    IntegrationError,
    NoOpSyncAdapter,
    ProviderResult,
    SyncAdapter,
    SyncOperation,
    SyncReport,
)
from .google_calendar import GoogleCalendarAdapter
from .trinks import TrinksAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[SalonIntegration, Session, httpx.AsyncClient], SyncAdapter]

ADAPTER_FACTORIES: dict[str, AdapterFactory] = {
    PROVIDER_GOOGLE: GoogleCalendarAdapter,
    PROVIDER_TRINKS: TrinksAdapter,
}

EXPECTED_PROVIDER_ERRORS = (asyncio.TimeoutError, IntegrationError, httpx.HTTPError)


class SyncDispatcher(Protocol):
    async def enqueue(self, operation: SyncOperation, appointment_id: str) -> None: ...


class SyncCoordinator:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        http_client: Optional[httpx.AsyncClient] = None,
        adapter_factories: Optional[dict[str, AdapterFactory]] = None,
        timeout_seconds: float = SYNC_TIMEOUT_SECONDS,
        dispatcher: Optional[SyncDispatcher] = None,
    ):
        self.session_factory = session_factory
        self._http_client = http_client
        self._owns_client = http_client is None
        self.adapter_factories = adapter_factories or ADAPTER_FACTORIES
        self.timeout_seconds = timeout_seconds
        self.dispatcher = dispatcher
        self._tasks: set[asyncio.Task] = set()

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS)
        return self._http_client

    async def aclose(self):
        await self.drain()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ========================================================================
    # ADAPTERS
    # ========================================================================

    def adapters_for(self, db: Session, salon_id: str) -> list[SyncAdapter]:
        """One adapter per known provider, NoOp where the integration is missing or inactive"""
        integrations = {
            integration.provider: integration
            for integration in db.query(SalonIntegration).filter(SalonIntegration.salon_id == salon_id).all()
        }
        adapters: list[SyncAdapter] = []
        for provider, factory in self.adapter_factories.items():
            integration = integrations.get(provider)
            if integration is None or not integration.is_active:
                adapters.append(NoOpSyncAdapter(provider))
            else:
                adapters.append(factory(integration, db, self.http_client))
        return adapters

    def active_adapters(self, db: Session, salon_id: str) -> list[SyncAdapter]:
        return [adapter for adapter in self.adapters_for(db, salon_id) if adapter.is_active]

    @staticmethod
    def build_payload(appointment: Appointment, adapter: SyncAdapter) -> AppointmentPayload:
        professional = appointment.professional
        customer = appointment.customer
        service = appointment.service
        salon = professional.salon if professional else None
        return AppointmentPayload(
            appointment_id=appointment.id,
            salon_id=appointment.salon_id,
            starts_at=appointment.starts_at,
            ends_at=appointment.ends_at,
            timezone=salon.timezone if salon else "UTC",
            status=appointment.status,
            service_name=service.name if service else "Service",
            professional_name=professional.name if professional else "Professional",
            customer_name=customer.name if customer else "Cliente",
            customer_email=customer.email if customer else None,
            customer_phone=customer.phone if customer else None,
            notes=appointment.notes,
            google_calendar_id=professional.google_calendar_id if professional else None,
            trinks_professional_id=professional.trinks_professional_id if professional else None,
            trinks_service_id=service.trinks_service_id if service else None,
            external_id=getattr(appointment, adapter.reference_field) if adapter.reference_field else None,
        )

    # ========================================================================
    # SYNC
    # ========================================================================

    async def _run(
        self, adapter: SyncAdapter, operation: SyncOperation, payload: AppointmentPayload
    ) -> ProviderResult:
        exc_info: Optional[BaseException] = None
        try:
            if operation == SyncOperation.CREATE:
                external_id = await asyncio.wait_for(adapter.create(payload), self.timeout_seconds)
            elif operation == SyncOperation.UPDATE:
                external_id = await asyncio.wait_for(adapter.update(payload), self.timeout_seconds)
            else:
                await asyncio.wait_for(adapter.delete(payload), self.timeout_seconds)
                external_id = None
            return ProviderResult(provider=adapter.provider, success=True, external_id=external_id)
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout_seconds}s"
        except IntegrationError as e:
            error = e.message
        except httpx.HTTPError as e:
            error = f"{type(e).__name__}: {e}"
        except Exception as e:
            # Malformed provider data or an adapter bug, still one provider only
            error = f"{type(e).__name__}: {e}"
            exc_info = e

        logger.error(
            f"❌ {adapter.provider} {operation.value} sync failed for appointment {payload.appointment_id}: {error}",
            extra={
                "provider": adapter.provider,
                "appointment_id": payload.appointment_id,
                "operation": operation.value,
            },
            exc_info=exc_info,
        )
        return ProviderResult(provider=adapter.provider, success=False, error=error)

    async def sync_appointment(
        self, db: Session, appointment: Appointment, operation: SyncOperation
    ) -> SyncReport:
        """
        Run every active adapter independently and write back references

        A create or update never leaves a live external record behind a
        cancelled appointment: cancelled rows are skipped, and a cancel that
        lands while the providers are being called gets the new records
        deleted instead of written back.
        """
        report = SyncReport(operation=operation, appointment_id=appointment.id)
        writes_back = operation in (SyncOperation.CREATE, SyncOperation.UPDATE)
        if writes_back and appointment.status == STATUS_CANCELLED:
            logger.info(f"ℹ️ Sync {operation.value} skipped, appointment {appointment.id} is cancelled")
            return report

        adapters = self.active_adapters(db, appointment.salon_id)
        if not adapters:
            return report

        payloads = [self.build_payload(appointment, adapter) for adapter in adapters]
        report.results = list(
            await asyncio.gather(
                *(self._run(adapter, operation, payload) for adapter, payload in zip(adapters, payloads))
            )
        )
        if not writes_back:
            return report

        values = {
            adapter.reference_field: result.external_id
            for adapter, result in zip(adapters, report.results)
            if result.success and result.external_id and adapter.reference_field
        }
        values["sync_status"] = SYNC_SYNCED if report.all_succeeded else SYNC_FAILED
        # Conditional so a cancel committed meanwhile is never overwritten
        written = (
            db.query(Appointment)
            .filter(Appointment.id == appointment.id, Appointment.status != STATUS_CANCELLED)
            .update(values, synchronize_session=False)
        )
        db.commit()
        if not written:
            await self._discard_created(adapters, payloads, report)
        return report

    async def _discard_created(
        self,
        adapters: list[SyncAdapter],
        payloads: list[AppointmentPayload],
        report: SyncReport,
    ):
        """Delete external records made for an appointment cancelled in the meantime"""
        logger.warning(f"⚠️ Appointment {report.appointment_id} was cancelled during sync, removing external copies")
        deletes = [
            self._run(adapter, SyncOperation.DELETE, replace(payload, external_id=result.external_id))
            for adapter, payload, result in zip(adapters, payloads, report.results)
            if result.success and result.external_id
        ]
        if deletes:
            await asyncio.gather(*deletes)

    async def sync(self, operation: SyncOperation, appointment_id: str) -> SyncReport:
        """Sync one appointment in its own session"""
        db = self.session_factory()
        try:
            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment:
                logger.warning(f"⚠️ Sync {operation.value} skipped, appointment {appointment_id} not found")
                return SyncReport(operation=operation, appointment_id=appointment_id)
            return await self.sync_appointment(db, appointment, operation)
        finally:
            db.close()

    async def delete_before_cancel(self, db: Session, appointment: Appointment) -> SyncReport:
        """
        Remove external copies before the local status flips

        Awaited by cancel and reschedule. The caller proceeds with the local
        change whatever the outcome.
        """
        return await self.sync_appointment(db, appointment, SyncOperation.DELETE)

    # ========================================================================
    # FIRE AND FORGET
    # ========================================================================

    async def _sync_logged(self, operation: SyncOperation, appointment_id: str):
        try:
            if self.dispatcher is not None:
                await self.dispatcher.enqueue(operation, appointment_id)
            else:
                await self.sync(operation, appointment_id)
        except Exception as e:
            # Background job: nothing to propagate to
            logger.error(
                f"❌ Background {operation.value} sync crashed for appointment {appointment_id}: {e}",
                exc_info=True,
            )

    def schedule(self, operation: SyncOperation, appointment_id: str) -> asyncio.Task:
        """Start a sync without blocking the caller"""
        task = asyncio.get_running_loop().create_task(self._sync_logged(operation, appointment_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Wait for scheduled syncs (shutdown, tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========================================================================
    # BUSY PERIODS
    # ========================================================================

    async def get_busy_periods(
        self, db: Session, professional: Professional, start: datetime, end: datetime
    ) -> list[BusyPeriod]:
        """Busy periods from external systems, best effort"""
        adapters = self.active_adapters(db, professional.salon_id)
        if not adapters:
            return []

        results = await asyncio.gather(
            *(
                asyncio.wait_for(
                    adapter.get_busy_periods(
                        start,
                        end,
                        google_calendar_id=professional.google_calendar_id,
                        trinks_professional_id=professional.trinks_professional_id,
                    ),
                    self.timeout_seconds,
                )
                for adapter in adapters
            ),
            return_exceptions=True,
        )

        periods: list[BusyPeriod] = []
        for adapter, result in zip(adapters, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"⚠️ Ignoring {adapter.provider} busy periods for professional {professional.id}: "
                    f"{type(result).__name__}: {result}",
                    exc_info=None if isinstance(result, EXPECTED_PROVIDER_ERRORS) else result,
                )
                continue
            if isinstance(result, BaseException):
                # Cancellation and interpreter exits are not provider failures
                raise result
            periods.extend(result)
        return periods
