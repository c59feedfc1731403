"""
OAuth token storage and refresh for salon integrations
"""

import base64
import hashlib
import logging
from datetime import timedelta
from typing import Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import TOKEN_ENCRYPTION_KEY, TOKEN_REFRESH_HORIZON_MINUTES
from ..models_integrations import SalonIntegration
from ..shared.datetime_utils import utcnow
from .base import TokenRefreshError

logger = logging.getLogger(__name__)


def get_cipher_suite() -> Fernet:
    """Use the configured key directly when it is a Fernet key, otherwise derive one from it"""
    try:
        return Fernet(TOKEN_ENCRYPTION_KEY.encode())
    except ValueError:
        return Fernet(base64.urlsafe_b64encode(hashlib.sha256(TOKEN_ENCRYPTION_KEY.encode()).digest()))


def encrypt_token(token: str) -> str:
    return get_cipher_suite().encrypt(token.encode()).decode()


def decrypt_token(encrypted: Optional[str]) -> Optional[str]:
    if not encrypted:
        return None
    try:
        return get_cipher_suite().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("❌ Stored integration token could not be decrypted")
        return None


def needs_refresh(integration: SalonIntegration) -> bool:
    """Missing access token or one expiring inside the refresh horizon"""
    if not integration.access_token:
        return True
    if integration.token_expires_at is None:
        return False
    return integration.token_expires_at <= utcnow() + timedelta(minutes=TOKEN_REFRESH_HORIZON_MINUTES)


async def get_valid_access_token(
    integration: SalonIntegration,
    db: Session,
    http_client: httpx.AsyncClient,
    token_url: str,
    client_id: Optional[str],
    client_secret: Optional[str],
) -> str:
    """
    Return a usable access token, refreshing and persisting it when close to expiry

    Raises:
        TokenRefreshError: refresh token missing or the provider rejected the exchange
    """
    if not needs_refresh(integration):
        access_token = decrypt_token(integration.access_token)
        if access_token:
            return access_token

    logger.info(f"🔄 {integration.provider} token expired for salon {integration.salon_id}, refreshing...")

    refresh_token = decrypt_token(integration.refresh_token)
    if not refresh_token:
        raise TokenRefreshError(integration.provider, "No refresh token stored")

    try:
        response = await http_client.post(
            token_url,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
    except httpx.HTTPError as e:
        raise TokenRefreshError(integration.provider, f"Token refresh request failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"❌ Token refresh failed: {response.text}")
        raise TokenRefreshError(integration.provider, "Token refresh rejected", response.status_code)

    try:
        tokens = response.json()
        new_access_token = tokens.get("access_token")
        expires_in = int(tokens.get("expires_in", 3600))
    except (ValueError, TypeError, AttributeError) as e:
        logger.error(f"❌ Unreadable token refresh response: {response.text[:200]}")
        raise TokenRefreshError(integration.provider, f"Malformed refresh response: {e}") from e

    if not new_access_token:
        raise TokenRefreshError(integration.provider, "No access token in refresh response")

    integration.access_token = encrypt_token(new_access_token)
    integration.token_expires_at = utcnow() + timedelta(seconds=expires_in)
    # Some providers rotate the refresh token
    if tokens.get("refresh_token"):
        integration.refresh_token = encrypt_token(tokens["refresh_token"])
    db.commit()

    logger.info(f"✅ {integration.provider} token refreshed successfully")
    return new_access_token
