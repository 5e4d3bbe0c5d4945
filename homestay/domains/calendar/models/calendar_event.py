"""Imported calendar event model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from homestay.domains.calendar.constants import CLASSIFICATION_UNCLASSIFIED
from homestay.extensions import db


class CalendarEvent(db.Model):
    """
    One occurrence imported from an external calendar source.

    Content fields mirror the provider. The classification fields
    (classification, assigned_home_id, mapping_rule_id, proposed_home_id) are a
    cache of the rule store and are only written by the relabel pass.
    """

    __tablename__ = "calendar_event"
    __table_args__ = (
        db.UniqueConstraint("calendar_source_id", "external_id", name="uq_calendar_event_source_external"),
        db.Index("ix_calendar_event_source_title", "calendar_source_id", "title"),
        db.Index("ix_calendar_event_child_start", "child_id", "start_time"),
        db.Index("ix_calendar_event_child_classification", "child_id", "classification"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    calendar_source_id: Mapped[str] = mapped_column(
        db.ForeignKey("calendar_source.id", ondelete="CASCADE"), index=True, nullable=False
    )
    child_id: Mapped[str] = mapped_column(db.ForeignKey("child.id"), index=True, nullable=False)

    # Event content
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text)
    location: Mapped[str | None] = mapped_column(db.String(512))

    # Timing
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    all_day: Mapped[bool] = mapped_column(default=False, nullable=False)
    timezone: Mapped[str | None] = mapped_column(db.String(64))
    recurrence_rule: Mapped[str | None] = mapped_column(db.String(512))
    external_updated_at: Mapped[datetime | None] = mapped_column()

    # Values: 'all_day', 'multi_day', 'recurring'
    candidate_reason: Mapped[str | None] = mapped_column(db.String(16))

    # Classification cache
    classification: Mapped[str] = mapped_column(
        db.String(16), nullable=False, default=CLASSIFICATION_UNCLASSIFIED
    )
    assigned_home_id: Mapped[str | None] = mapped_column(db.ForeignKey("home.id"))
    mapping_rule_id: Mapped[int | None] = mapped_column(
        db.ForeignKey("calendar_mapping_rule.id", ondelete="SET NULL")
    )
    proposed_home_id: Mapped[str | None] = mapped_column(db.ForeignKey("home.id"))

    # Human confirmation of a rule for this occurrence
    confirmed_rule_id: Mapped[int | None] = mapped_column(
        db.ForeignKey("calendar_mapping_rule.id", ondelete="SET NULL")
    )

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column()

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


__all__ = ["CalendarEvent"]
