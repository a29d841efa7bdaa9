"""Proxy authorization ORM model: one row per grant, never hard-deleted."""

from datetime import datetime

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from proxyguard.clock import utc_now
from proxyguard.models.base import Base, UTCDateTime, new_id


class ProxyAuthorization(Base):
    __tablename__ = "proxy_authorizations"
    __table_args__ = (
        Index("proxy_authorizations_active_idx", "user_id", "action_class", "revoked_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(256), index=True)
    action_class: Mapped[str] = mapped_column(String(64), index=True)
    action_type: Mapped[str] = mapped_column(String(32))
    scope: Mapped[str] = mapped_column(String(32), index=True)
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    grant_method: Mapped[str] = mapped_column(String(32))
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    granted_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, onupdate=utc_now)
