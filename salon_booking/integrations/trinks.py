"""
Trinks scheduling platform adapter
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import TRINKS_API_BASE_URL, TRINKS_CLIENT_ID, TRINKS_CLIENT_SECRET, TRINKS_TOKEN_URL
from ..models_integrations import PROVIDER_TRINKS, SalonIntegration
from ..shared.datetime_utils import get_zone
from .base import AppointmentPayload, BusyPeriod, IntegrationError, SyncAdapter, read_json
from .tokens import get_valid_access_token

logger = logging.getLogger(__name__)

TRINKS_STATUS = {
    "pending": "agendado",
    "confirmed": "confirmado",
    "cancelled": "cancelado",
    "completed": "finalizado",
}


def build_booking_data(payload: AppointmentPayload) -> dict:
    local_start = payload.starts_at.astimezone(get_zone(payload.timezone))
    return {
        "data": local_start.strftime("%Y-%m-%d"),
        "hora": local_start.strftime("%H:%M"),
        "profissional_id": payload.trinks_professional_id,
        "servico_id": payload.trinks_service_id,
        "cliente_nome": payload.customer_name or "Cliente",
        "cliente_email": payload.customer_email or "",
        "cliente_telefone": payload.customer_phone or "",
        "observacoes": payload.notes or "",
        "status": TRINKS_STATUS.get(payload.status, "agendado"),
    }


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TrinksAdapter(SyncAdapter):
    provider = PROVIDER_TRINKS
    reference_field = "trinks_event_id"

    def __init__(self, integration: SalonIntegration, db: Session, http_client: httpx.AsyncClient):
        self.integration = integration
        self.db = db
        self.http_client = http_client

    async def _request(self, method: str, endpoint: str, body: Optional[dict] = None) -> httpx.Response:
        access_token = await get_valid_access_token(
            self.integration,
            self.db,
            self.http_client,
            TRINKS_TOKEN_URL,
            TRINKS_CLIENT_ID,
            TRINKS_CLIENT_SECRET,
        )
        return await self.http_client.request(
            method,
            f"{TRINKS_API_BASE_URL}{endpoint}",
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            json=body,
        )

    def _raise_for(self, response: httpx.Response, action: str):
        logger.error(f"❌ Trinks API request failed ({action}): {response.status_code} {response.text}")
        raise IntegrationError(
            self.provider,
            f"Trinks API error ({response.status_code}): {response.text}",
            response.status_code,
        )

    async def create(self, payload: AppointmentPayload) -> Optional[str]:
        response = await self._request("POST", "/agendamentos", build_booking_data(payload))
        if response.status_code not in (200, 201):
            self._raise_for(response, "create")

        booking = read_json(self.provider, response)
        booking_id = booking.get("id") if isinstance(booking, dict) else None
        logger.info(f"✅ Trinks appointment created: {booking_id}")
        return str(booking_id) if booking_id is not None else None

    async def update(self, payload: AppointmentPayload) -> Optional[str]:
        if not payload.external_id:
            return await self.create(payload)

        response = await self._request("PUT", f"/agendamentos/{payload.external_id}", build_booking_data(payload))
        if response.status_code == 404:
            logger.info(f"ℹ️ Trinks appointment {payload.external_id} not found, creating a new one")
            return await self.create(payload)
        if response.status_code not in (200, 204):
            self._raise_for(response, "update")

        logger.info(f"✅ Trinks appointment updated: {payload.external_id}")
        return payload.external_id

    async def delete(self, payload: AppointmentPayload) -> bool:
        if not payload.external_id:
            return True

        response = await self._request("DELETE", f"/agendamentos/{payload.external_id}")
        if response.status_code == 404:
            logger.info(f"ℹ️ Trinks appointment {payload.external_id} already deleted")
            return True
        if response.status_code not in (200, 204):
            self._raise_for(response, "delete")

        logger.info(f"✅ Trinks appointment deleted: {payload.external_id}")
        return True

    async def get_busy_periods(
        self,
        start: datetime,
        end: datetime,
        google_calendar_id: Optional[str] = None,
        trinks_professional_id: Optional[str] = None,
    ) -> list[BusyPeriod]:
        endpoint = f"/agendamentos?dataInicio={start.date().isoformat()}&dataFim={end.date().isoformat()}"
        if trinks_professional_id:
            endpoint += f"&profissionalId={trinks_professional_id}"

        response = await self._request("GET", endpoint)
        if response.status_code != 200:
            self._raise_for(response, "list")

        bookings: Any = read_json(self.provider, response) or []
        if not isinstance(bookings, list):
            raise IntegrationError(self.provider, "Expected a list of bookings", response.status_code)

        periods = []
        for item in bookings:
            if not isinstance(item, dict) or item.get("status") == "cancelado":
                continue
            try:
                periods.append(
                    BusyPeriod(
                        start=_parse_instant(item["dataInicio"]),
                        end=_parse_instant(item["dataFim"]),
                        source=self.provider,
                    )
                )
            except (KeyError, TypeError, AttributeError, ValueError):
                logger.warning(f"⚠️ Skipping malformed Trinks booking: {item}")
        return periods
