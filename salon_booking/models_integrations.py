"""
External integration models (Google Calendar, Trinks)
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base
from .models import UTCDateTime, generate_id

PROVIDER_GOOGLE = "google"
PROVIDER_TRINKS = "trinks"


class SalonIntegration(Base):
    __tablename__ = "salon_integrations"

    id = Column(String(36), primary_key=True, default=generate_id)
    salon_id = Column(String(36), ForeignKey("salons.id"), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(UTCDateTime, nullable=True)

    # Provider account info
    account_email = Column(String(255), nullable=True)
    calendar_id = Column(String(500), nullable=True)
    external_account_id = Column(String(100), nullable=True)
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("salon_id", "provider", name="uq_salon_provider"),)
