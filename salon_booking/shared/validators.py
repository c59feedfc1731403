"""Shared validation utilities"""

import re
import uuid
from typing import Optional


def validate_uuid(value: Optional[str]) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Reduce a phone number to its digits for lookups.

    Brazilian numbers arrive with or without the 55 country code, with or
    without the mobile 9 prefix, so only the trailing digits are compared.

    Raises:
        ValueError: If fewer than 8 digits remain
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if len(digits) < 8:
        raise ValueError("Phone number must have at least 8 digits")
    return digits


def phone_suffix(phone: str, length: int = 8) -> str:
    return normalize_phone(phone)[-length:]


def validate_notes(notes: Optional[str], max_length: int = 2000) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    if len(notes) > max_length:
        raise ValueError(f"Notes must be at most {max_length} characters")
    return notes or None
