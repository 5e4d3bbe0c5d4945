"""Outbox rows staged in the same transaction as calendar changes."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from homestay.extensions import db


class OutboxMessage(db.Model):
    """
    One domain event waiting to be published.

    Status moves pending -> sending -> sent, or through retry back to
    sending, and ends at dead once the attempt budget is spent.
    """

    __tablename__ = "platform_outbox"
    __table_args__ = (
        db.Index("ix_platform_outbox_status_available_at", "status", "available_at"),
        db.Index("ix_platform_outbox_child_created_at", "child_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type: Mapped[str] = mapped_column(db.String(128), nullable=False, index=True)
    child_id: Mapped[str | None] = mapped_column(db.String(36))
    payload: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(db.String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    available_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    last_error: Mapped[str | None] = mapped_column(db.Text)

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column()
