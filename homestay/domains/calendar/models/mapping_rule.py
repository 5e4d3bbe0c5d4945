"""Durable user decisions: mapping rules and ignored titles."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from homestay.domains.calendar.constants import RESULTING_EVENT_TYPE_HOME_DAY
from homestay.extensions import db


class MappingRule(db.Model):
    """
    Maps events of one calendar source to a home.

    At most one rule exists per (child, source, match type, match value);
    a later decision for the same key replaces `home_id` in place.
    """

    __tablename__ = "calendar_mapping_rule"
    __table_args__ = (
        db.UniqueConstraint(
            "child_id",
            "calendar_source_id",
            "match_type",
            "match_value",
            name="uq_calendar_mapping_rule_key",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    child_id: Mapped[str] = mapped_column(db.ForeignKey("child.id"), index=True, nullable=False)
    calendar_source_id: Mapped[str] = mapped_column(
        db.ForeignKey("calendar_source.id", ondelete="CASCADE"), index=True, nullable=False
    )

    # Values: 'event_id', 'title_exact'
    match_type: Mapped[str] = mapped_column(db.String(16), nullable=False)
    match_value: Mapped[str] = mapped_column(db.String(255), nullable=False)

    home_id: Mapped[str] = mapped_column(db.ForeignKey("home.id"), nullable=False)
    resulting_event_type: Mapped[str] = mapped_column(
        db.String(32), nullable=False, default=RESULTING_EVENT_TYPE_HOME_DAY
    )
    auto_confirm: Mapped[bool] = mapped_column(default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class IgnoreEntry(db.Model):
    """A (title, calendar source) pair the user declared is not a stay."""

    __tablename__ = "calendar_ignore_entry"
    __table_args__ = (
        db.UniqueConstraint("child_id", "calendar_source_id", "title", name="uq_calendar_ignore_entry_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    child_id: Mapped[str] = mapped_column(db.ForeignKey("child.id"), index=True, nullable=False)
    calendar_source_id: Mapped[str] = mapped_column(
        db.ForeignKey("calendar_source.id", ondelete="CASCADE"), index=True, nullable=False
    )
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)


__all__ = ["MappingRule", "IgnoreEntry"]
