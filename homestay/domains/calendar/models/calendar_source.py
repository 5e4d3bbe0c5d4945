"""Configured external calendars and the credentials they sync with."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column, relationship

from homestay.extensions import db


def _uuid() -> str:
    return str(uuid.uuid4())


class CalendarConnection(db.Model):
    """
    OAuth credentials for a calendar provider account.

    One connection can back several calendar sources (every calendar of a
    Google account). ICS sources need no connection.
    """

    __tablename__ = "calendar_connection"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=_uuid)

    # Provider identifier: 'google'
    provider: Mapped[str] = mapped_column(db.String(32), nullable=False)
    account_email: Mapped[str | None] = mapped_column(db.String(255))

    # OAuth tokens (encrypted at rest in production)
    access_token: Mapped[str | None] = mapped_column(db.Text)
    refresh_token: Mapped[str | None] = mapped_column(db.Text)
    expires_at: Mapped[datetime | None] = mapped_column()

    # Status
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    error_message: Mapped[str | None] = mapped_column(db.String(512))

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if not self.expires_at:
            return False
        return datetime.utcnow() >= self.expires_at

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)


class CalendarSource(db.Model):
    """
    One external calendar bound to one child.

    `provider_calendar_id` is the Google calendar id or the ICS feed URL.
    `sync_cursor` holds the Google sync token or the ICS ETag of the last
    successful import.
    """

    __tablename__ = "calendar_source"
    __table_args__ = (
        db.UniqueConstraint("child_id", "provider", "provider_calendar_id", name="uq_calendar_source_child_calendar"),
    )

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=_uuid)
    child_id: Mapped[str] = mapped_column(db.ForeignKey("child.id"), index=True, nullable=False)

    # Values: 'google', 'ics'
    provider: Mapped[str] = mapped_column(db.String(32), nullable=False)
    provider_calendar_id: Mapped[str] = mapped_column(db.String(1024), nullable=False)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(db.String(16))
    is_primary: Mapped[bool] = mapped_column(default=False, nullable=False)
    active: Mapped[bool] = mapped_column(default=True, nullable=False)

    connection_id: Mapped[str | None] = mapped_column(db.ForeignKey("calendar_connection.id", ondelete="SET NULL"))

    # Sync state
    sync_cursor: Mapped[str | None] = mapped_column(db.String(512))
    last_synced_at: Mapped[datetime | None] = mapped_column()
    last_sync_error: Mapped[str | None] = mapped_column(db.String(512))

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    connection: Mapped[CalendarConnection | None] = relationship("CalendarConnection")


__all__ = ["CalendarConnection", "CalendarSource"]
