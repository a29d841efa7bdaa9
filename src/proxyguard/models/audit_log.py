"""Proxy audit log ORM model: every attempted action is persisted here.

Rows are insert-only: nothing in this package updates or deletes them.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from proxyguard.clock import utc_now
from proxyguard.models.base import Base, UTCDateTime, new_id


class ProxyAuditLog(Base):
    __tablename__ = "proxy_audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(256), index=True)
    authorization_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    # What was attempted
    action: Mapped[str] = mapped_column(Text)
    action_class: Mapped[str] = mapped_column(String(64), index=True)
    mode: Mapped[str] = mapped_column(String(16))
    persona: Mapped[str] = mapped_column(String(32))
    input: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    output: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Model telemetry
    model_used: Mapped[str | None] = mapped_column(String(128), nullable=True)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0-100
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, index=True)
