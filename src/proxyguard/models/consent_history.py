"""Consent history ORM model: append-only log of authorization changes."""

from datetime import datetime

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from proxyguard.clock import utc_now
from proxyguard.models.base import Base, UTCDateTime, new_id


class ConsentHistory(Base):
    __tablename__ = "consent_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(256), index=True)
    authorization_id: Mapped[str] = mapped_column(String(36), index=True)
    change_type: Mapped[str] = mapped_column(String(16), index=True)
    previous_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, index=True)
