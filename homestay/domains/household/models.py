"""Household models: children and the homes they stay at."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from homestay.extensions import db


def _uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)


class Child(db.Model, TimestampMixin):
    __tablename__ = "child"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)


class Home(db.Model, TimestampMixin):
    __tablename__ = "home"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(db.String(512))
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
