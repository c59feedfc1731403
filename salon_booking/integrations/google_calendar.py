"""
Google Calendar adapter
Handles calendar event creation, updates, deletion and busy lookups
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET
from ..models_integrations import PROVIDER_GOOGLE, SalonIntegration
from .base import AppointmentPayload, BusyPeriod, IntegrationError, SyncAdapter, read_json
from .tokens import get_valid_access_token

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

# Already deleted on Google's side
GONE_STATUS_CODES = (404, 410)


def build_event_data(payload: AppointmentPayload) -> dict:
    description = f"Service appointment with {payload.customer_name}"
    if payload.customer_phone:
        description += f"\nPhone: {payload.customer_phone}"
    if payload.notes:
        description += f"\n\nNotes: {payload.notes}"

    return {
        "summary": f"[{payload.professional_name}] {payload.service_name} - {payload.customer_name}",
        "description": description,
        "start": {"dateTime": payload.starts_at.isoformat(), "timeZone": payload.timezone},
        "end": {"dateTime": payload.ends_at.isoformat(), "timeZone": payload.timezone},
        "extendedProperties": {"private": {"appointmentId": payload.appointment_id}},
    }


class GoogleCalendarAdapter(SyncAdapter):
    provider = PROVIDER_GOOGLE
    reference_field = "google_event_id"

    def __init__(self, integration: SalonIntegration, db: Session, http_client: httpx.AsyncClient):
        self.integration = integration
        self.db = db
        self.http_client = http_client

    async def _headers(self) -> dict:
        access_token = await get_valid_access_token(
            self.integration,
            self.db,
            self.http_client,
            GOOGLE_TOKEN_URL,
            GOOGLE_CLIENT_ID,
            GOOGLE_CLIENT_SECRET,
        )
        return {"Authorization": f"Bearer {access_token}"}

    def _calendar_id(self, calendar_id: Optional[str] = None) -> str:
        return calendar_id or self.integration.calendar_id or "primary"

    def _events_url(self, payload: AppointmentPayload) -> str:
        return f"{GOOGLE_CALENDAR_API}/calendars/{self._calendar_id(payload.google_calendar_id)}/events"

    async def create(self, payload: AppointmentPayload) -> Optional[str]:
        response = await self.http_client.post(
            self._events_url(payload),
            headers=await self._headers(),
            json=build_event_data(payload),
        )
        if response.status_code not in (200, 201):
            raise IntegrationError(self.provider, f"Failed to create event: {response.text}", response.status_code)

        event = read_json(self.provider, response)
        event_id = event.get("id") if isinstance(event, dict) else None
        if not event_id:
            raise IntegrationError(self.provider, "Created event has no id", response.status_code)
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    async def update(self, payload: AppointmentPayload) -> Optional[str]:
        if not payload.external_id:
            logger.info(f"ℹ️ Appointment {payload.appointment_id} has no Google event yet, creating one")
            return await self.create(payload)

        response = await self.http_client.put(
            f"{self._events_url(payload)}/{payload.external_id}",
            headers=await self._headers(),
            json=build_event_data(payload),
        )
        if response.status_code in GONE_STATUS_CODES:
            logger.info(f"ℹ️ Google event {payload.external_id} no longer exists, recreating")
            return await self.create(payload)
        if response.status_code != 200:
            raise IntegrationError(self.provider, f"Failed to update event: {response.text}", response.status_code)

        logger.info(f"✅ Google Calendar event updated: {payload.external_id}")
        return payload.external_id

    async def delete(self, payload: AppointmentPayload) -> bool:
        if not payload.external_id:
            return True

        response = await self.http_client.delete(
            f"{self._events_url(payload)}/{payload.external_id}",
            headers=await self._headers(),
        )
        if response.status_code in GONE_STATUS_CODES:
            logger.info(f"ℹ️ Google event {payload.external_id} already deleted")
            return True
        if response.status_code not in (200, 204):
            raise IntegrationError(self.provider, f"Failed to delete event: {response.text}", response.status_code)

        logger.info(f"✅ Google Calendar event deleted: {payload.external_id}")
        return True

    async def get_busy_periods(
        self,
        start: datetime,
        end: datetime,
        google_calendar_id: Optional[str] = None,
        trinks_professional_id: Optional[str] = None,
    ) -> list[BusyPeriod]:
        calendar_id = self._calendar_id(google_calendar_id)
        response = await self.http_client.post(
            f"{GOOGLE_CALENDAR_API}/freeBusy",
            headers=await self._headers(),
            json={
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "items": [{"id": calendar_id}],
            },
        )
        if response.status_code != 200:
            raise IntegrationError(self.provider, f"freeBusy failed: {response.text}", response.status_code)

        body = read_json(self.provider, response)
        try:
            busy = body["calendars"][calendar_id].get("busy") or []
        except (KeyError, TypeError, AttributeError):
            logger.warning(f"⚠️ freeBusy response has no entry for calendar {calendar_id}")
            return []

        periods = []
        for item in busy:
            try:
                periods.append(
                    BusyPeriod(
                        start=datetime.fromisoformat(item["start"].replace("Z", "+00:00")),
                        end=datetime.fromisoformat(item["end"].replace("Z", "+00:00")),
                        source=self.provider,
                    )
                )
            except (KeyError, TypeError, AttributeError, ValueError):
                logger.warning(f"⚠️ Skipping malformed Google busy period: {item}")
        return periods
