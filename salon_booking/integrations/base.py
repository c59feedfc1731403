"""
Sync adapter contract shared by every external calendar / scheduler
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class IntegrationError(Exception):
    """A provider call failed. Never escapes the sync coordinator."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


class TokenRefreshError(IntegrationError):
    pass


def read_json(provider: str, response: httpx.Response) -> Any:
    """Decode a provider response body, IntegrationError when it is not JSON"""
    try:
        return response.json()
    except ValueError as e:
        raise IntegrationError(provider, f"Unreadable response body: {response.text[:200]}", response.status_code) from e


@dataclass
class AppointmentPayload:
    """Everything an adapter needs to mirror one appointment"""

    appointment_id: str
    salon_id: str
    starts_at: datetime
    ends_at: datetime
    timezone: str
    status: str
    service_name: str
    professional_name: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    google_calendar_id: Optional[str] = None
    trinks_professional_id: Optional[str] = None
    trinks_service_id: Optional[str] = None
    # Reference already stored for the adapter's provider, if any
    external_id: Optional[str] = None


@dataclass
class BusyPeriod:
    start: datetime
    end: datetime
    source: str = "external"


@dataclass
class ProviderResult:
    provider: str
    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncReport:
    operation: SyncOperation
    appointment_id: str
    results: list[ProviderResult] = field(default_factory=list)

    def succeeded(self, provider: str) -> Optional[bool]:
        """None when the provider was not involved"""
        for result in self.results:
            if result.provider == provider:
                return result.success
        return None

    @property
    def all_succeeded(self) -> bool:
        return all(result.success for result in self.results)


class SyncAdapter(ABC):
    """One external system. Adapters raise IntegrationError on failure."""

    provider: str = "base"
    # Appointment column holding this provider's reference
    reference_field: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return True

    @abstractmethod
    async def create(self, payload: AppointmentPayload) -> Optional[str]:
        """Create the external record, return its id"""

    @abstractmethod
    async def update(self, payload: AppointmentPayload) -> Optional[str]:
        """Update (or create when missing) the external record, return its id"""

    @abstractmethod
    async def delete(self, payload: AppointmentPayload) -> bool:
        """Remove the external record. A record that is already gone counts as deleted."""

    async def get_busy_periods(
        self,
        start: datetime,
        end: datetime,
        google_calendar_id: Optional[str] = None,
        trinks_professional_id: Optional[str] = None,
    ) -> list[BusyPeriod]:
        return []


class NoOpSyncAdapter(SyncAdapter):
    """Stands in for an integration that is not connected or disabled"""

    provider = "noop"

    def __init__(self, provider: str = "noop"):
        self.provider = provider

    @property
    def is_active(self) -> bool:
        return False

    async def create(self, payload: AppointmentPayload) -> Optional[str]:
        return None

    async def update(self, payload: AppointmentPayload) -> Optional[str]:
        return None

    async def delete(self, payload: AppointmentPayload) -> bool:
        return True
