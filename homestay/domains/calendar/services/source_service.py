"""
Calendar source registry: connecting, selecting and disconnecting calendars.

Provider calls (fetching an ICS feed for its name, listing Google calendars)
happen before the database transaction opens, so a slow provider never holds
the source lock.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from homestay.domains.calendar.constants import PROVIDER_GOOGLE, PROVIDER_ICS, PROVIDERS
from homestay.domains.calendar.errors import NotFoundError, ValidationError
from homestay.domains.calendar.events import CALENDAR_SOURCE_CONNECTED, CALENDAR_SOURCE_DISCONNECTED
from homestay.domains.calendar.models import CalendarConnection, CalendarEvent, CalendarSource
from homestay.domains.calendar.schemas import ProviderCalendar
from homestay.domains.calendar.services.mapping_service import _with_conflict_retry, lock_calendar_source
from homestay.domains.calendar.services.providers import GoogleCalendarProvider, IcsFeedProvider
from homestay.domains.calendar.services.providers.google import get_valid_access_token
from homestay.domains.calendar.services.providers.ics import mask_feed_url, normalize_feed_url
from homestay.domains.household.services import get_child
from homestay.extensions import db
from homestay.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

FEED_URL_SCHEMES = ("webcal", "http", "https")
MAX_FEED_URL_LENGTH = 1024


def validate_feed_url(feed_url: Optional[str]) -> str:
    """
    Check a published calendar link and return it normalized to https.

    Raises:
        ValidationError: `invalid_feed_url` when the link is empty, uses
            another scheme or has no host.
    """
    raw = (feed_url or "").strip()
    if not raw:
        raise ValidationError("invalid_feed_url", "URL is required")
    scheme = raw.split("://", 1)[0].lower() if "://" in raw else ""
    if scheme not in FEED_URL_SCHEMES:
        raise ValidationError("invalid_feed_url", "URL must start with webcal://, https:// or http://")
    normalized = normalize_feed_url(raw)
    try:
        host = urlsplit(normalized).hostname
    except ValueError:
        host = None
    if not host:
        raise ValidationError("invalid_feed_url", "Invalid URL format")
    if len(normalized) > MAX_FEED_URL_LENGTH:
        raise ValidationError("invalid_feed_url", "URL is too long")
    return normalized


def list_calendar_sources(child_id: Optional[str] = None, include_inactive: bool = False) -> List[CalendarSource]:
    query = CalendarSource.query
    if child_id is not None:
        query = query.filter(CalendarSource.child_id == child_id)
    if not include_inactive:
        query = query.filter(CalendarSource.active.is_(True))
    return query.order_by(CalendarSource.created_at, CalendarSource.id).all()


def _require_child(child_id: str) -> None:
    if get_child(child_id) is None:
        raise NotFoundError("child_not_found", child_id)


def _upsert_source(child_id: str, provider: str, calendar: ProviderCalendar, connection_id: Optional[str]) -> CalendarSource:
    if provider not in PROVIDERS:
        raise ValidationError("unsupported_provider", provider)
    source = CalendarSource.query.filter_by(
        child_id=child_id, provider=provider, provider_calendar_id=calendar.id
    ).one_or_none()
    created = source is None
    if created:
        source = CalendarSource(child_id=child_id, provider=provider, provider_calendar_id=calendar.id)
        db.session.add(source)
    reactivated = not created and not source.active
    source.name = calendar.name[:255]
    source.color = calendar.color
    source.is_primary = calendar.is_primary
    source.connection_id = connection_id
    source.active = True
    if reactivated:
        # Re-read the whole calendar so soft-deleted events come back.
        source.sync_cursor = None
    db.session.flush()

    if created or reactivated:
        enqueue_outbox(
            CALENDAR_SOURCE_CONNECTED,
            {"calendar_source_id": source.id, "child_id": child_id, "provider": provider},
            child_id=child_id,
        )
    return source


def connect_ics_source(child_id: str, feed_url: str, name: Optional[str] = None) -> CalendarSource:
    """
    Register a published iCalendar feed for a child.

    The feed is fetched once to prove it is reachable and to read its
    calendar name. Connecting the same link again reactivates the source.

    Raises:
        ValidationError: for a malformed link or an unknown child.
        IcsFeedError: when the feed cannot be fetched.
    """
    feed_url = validate_feed_url(feed_url)
    _require_child(child_id)
    calendars = IcsFeedProvider(feed_url=feed_url).list_calendars()
    calendar = calendars[0] if calendars else ProviderCalendar(id=feed_url, name="Calendar", is_primary=True)
    if name:
        calendar = calendar.model_copy(update={"name": name})

    source = _with_conflict_retry(
        lambda: _upsert_source(child_id, PROVIDER_ICS, calendar, None),
        f"connecting ICS feed for child {child_id}",
    )
    logger.info(f"Connected ICS calendar source {source.id} ({mask_feed_url(feed_url)}) for child {child_id}")
    return source


def _active_connection(connection_id: str) -> CalendarConnection:
    connection = db.session.get(CalendarConnection, connection_id)
    if connection is None or connection.provider != PROVIDER_GOOGLE:
        raise NotFoundError("connection_not_found", connection_id)
    if not connection.is_active:
        raise ValidationError("connection_inactive", connection_id)
    return connection


def list_google_calendars(connection_id: str) -> List[ProviderCalendar]:
    """List the calendars a Google account offers, primary first."""
    connection = _active_connection(connection_id)
    return GoogleCalendarProvider(get_valid_access_token(connection)).list_calendars()


def save_google_sources(child_id: str, connection_id: str, calendar_ids: Sequence[str]) -> List[CalendarSource]:
    """
    Make the selected Google calendars the child's Google sources for a connection.

    Selected calendars are created or reactivated; previously selected ones
    that are no longer chosen are disconnected. Unknown calendar ids are
    rejected before anything is written.
    """
    _require_child(child_id)
    offered = {calendar.id: calendar for calendar in list_google_calendars(connection_id)}
    unknown = [calendar_id for calendar_id in calendar_ids if calendar_id not in offered]
    if unknown:
        raise ValidationError("unknown_calendar", ", ".join(unknown))
    selected = list(dict.fromkeys(calendar_ids))

    def _apply() -> List[CalendarSource]:
        existing = CalendarSource.query.filter_by(
            child_id=child_id, provider=PROVIDER_GOOGLE, connection_id=connection_id, active=True
        ).all()
        for source in existing:
            if source.provider_calendar_id not in selected:
                _deactivate(source)
        return [
            _upsert_source(child_id, PROVIDER_GOOGLE, offered[calendar_id], connection_id)
            for calendar_id in selected
        ]

    sources = _with_conflict_retry(_apply, f"saving Google calendars for child {child_id}")
    logger.info(f"Saved {len(sources)} Google calendar sources for child {child_id}")
    return sources


def _deactivate(source: CalendarSource) -> int:
    """Deactivate a source and soft-delete its live events. Returns the number removed."""
    removed = CalendarEvent.query.filter(
        CalendarEvent.calendar_source_id == source.id,
        CalendarEvent.is_deleted.is_(False),
    ).update({"is_deleted": True, "deleted_at": datetime.utcnow()}, synchronize_session="fetch")
    was_active = source.active
    source.active = False
    source.sync_cursor = None
    if was_active:
        enqueue_outbox(
            CALENDAR_SOURCE_DISCONNECTED,
            {
                "calendar_source_id": source.id,
                "child_id": source.child_id,
                "provider": source.provider,
                "events_removed": removed,
            },
            child_id=source.child_id,
        )
    return removed


def disconnect_source(calendar_source_id: str) -> int:
    """
    Stop syncing a calendar source and hide its events.

    Rules and ignores stay, so reconnecting the same calendar restores the
    labels. Returns the number of events removed.
    """
    removed = _with_conflict_retry(
        lambda: _deactivate(lock_calendar_source(calendar_source_id)),
        f"disconnecting source {calendar_source_id}",
    )
    logger.info(f"Disconnected calendar source {calendar_source_id}: {removed} events removed")
    return removed


def replace_ics_url(calendar_source_id: str, feed_url: str) -> CalendarSource:
    """
    Point an ICS source at a new link, for when the old one expired.

    The ETag and the last sync error are cleared so the next import fetches
    the new feed in full.
    """
    feed_url = validate_feed_url(feed_url)

    def _apply() -> CalendarSource:
        source = lock_calendar_source(calendar_source_id)
        if source.provider != PROVIDER_ICS:
            raise ValidationError("not_an_ics_source", calendar_source_id)
        duplicate = CalendarSource.query.filter(
            CalendarSource.child_id == source.child_id,
            CalendarSource.provider == PROVIDER_ICS,
            CalendarSource.provider_calendar_id == feed_url,
            CalendarSource.id != source.id,
        ).first()
        if duplicate is not None:
            raise ValidationError("duplicate_source", duplicate.id)
        source.provider_calendar_id = feed_url
        source.sync_cursor = None
        source.last_sync_error = None
        db.session.flush()
        return source

    source = _with_conflict_retry(_apply, f"replacing feed link of source {calendar_source_id}")
    logger.info(f"Replaced feed link of calendar source {calendar_source_id} with {mask_feed_url(feed_url)}")
    return source


__all__ = [
    "connect_ics_source",
    "disconnect_source",
    "list_calendar_sources",
    "list_google_calendars",
    "mask_feed_url",
    "replace_ics_url",
    "save_google_sources",
    "validate_feed_url",
]
