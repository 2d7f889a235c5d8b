"""
SQLAlchemy ORM models mirroring database/schema.sql.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ServiceM8Connection(Base):
    __tablename__ = "servicem8_connections"

    # Owned by the host auth system; referenced, not a foreign key here.
    user_id = Column(String(64), primary_key=True)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
