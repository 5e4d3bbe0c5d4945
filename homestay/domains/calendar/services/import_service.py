"""Importer: pulls provider events into the event store and relabels the source."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from homestay.domains.calendar.constants import (
    CANDIDATE_REASON_ALL_DAY,
    CANDIDATE_REASON_MULTI_DAY,
    CANDIDATE_REASON_RECURRING,
)
from homestay.domains.calendar.errors import (
    HomeStayError,
    NotFoundError,
    UpstreamImportError,
    ValidationError,
)
from homestay.domains.calendar.events import CALENDAR_SOURCE_IMPORTED
from homestay.domains.calendar.models import CalendarEvent, CalendarSource
from homestay.domains.calendar.schemas import ProviderEvent
from homestay.domains.calendar.services.mapping_service import (
    lock_calendar_source,
    relabel_calendar_source,
)
from homestay.domains.calendar.services.providers import (
    CalendarProvider,
    ProviderEventPage,
    provider_for_source,
)
from homestay.extensions import db
from homestay.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

_CONTENT_FIELDS = (
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "all_day",
    "timezone",
    "recurrence_rule",
    "external_updated_at",
    "candidate_reason",
)


@dataclass
class ImportResult:
    calendar_source_id: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    relabeled: int = 0
    not_modified: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ImportSummary:
    results: List[ImportResult] = field(default_factory=list)
    # calendar_source_id -> error message
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def candidate_reason(event: ProviderEvent) -> Optional[str]:
    """Why an event looks like a stay: all-day, spanning 24h or more, or recurring."""
    if event.all_day:
        return CANDIDATE_REASON_ALL_DAY
    if (event.end - event.start).total_seconds() >= 24 * 3600:
        return CANDIDATE_REASON_MULTI_DAY
    if event.recurrence_rule or event.recurrence_id:
        return CANDIDATE_REASON_RECURRING
    return None


def validate_provider_events(source_id: str, raw_events: Sequence) -> List[ProviderEvent]:
    """
    Validate a whole batch before anything is written.

    The last payload wins when an external id repeats.
    """
    validated: Dict[str, ProviderEvent] = {}
    for index, raw in enumerate(raw_events):
        try:
            event = raw if isinstance(raw, ProviderEvent) else ProviderEvent.model_validate(raw)
        except PydanticValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise UpstreamImportError(
                source_id,
                f"Malformed event at position {index}: {location} {first.get('msg')}".strip(),
            ) from e
        validated[event.external_id] = event
    return list(validated.values())


def _content(event: ProviderEvent) -> dict:
    return {
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start_time": event.start,
        "end_time": event.end,
        "all_day": event.all_day,
        "timezone": event.timezone,
        "recurrence_rule": event.recurrence_rule,
        "external_updated_at": event.updated,
        "candidate_reason": candidate_reason(event),
    }


def _soft_delete(event: CalendarEvent, now: datetime) -> bool:
    if event.is_deleted:
        return False
    event.is_deleted = True
    event.deleted_at = now
    return True


def _apply_page(source: CalendarSource, page: ProviderEventPage, events: List[ProviderEvent], result: ImportResult) -> None:
    now = datetime.utcnow()
    existing = {
        event.external_id: event
        for event in CalendarEvent.query.filter_by(calendar_source_id=source.id).all()
    }
    seen = set()

    for item in events:
        seen.add(item.external_id)
        event = existing.get(item.external_id)

        if item.is_cancelled:
            if event is not None and _soft_delete(event, now):
                result.deleted += 1
            continue

        content = _content(item)
        if event is None:
            event = CalendarEvent(
                external_id=item.external_id,
                calendar_source_id=source.id,
                child_id=source.child_id,
                **content,
            )
            db.session.add(event)
            existing[item.external_id] = event
            result.created += 1
            continue

        changed = event.is_deleted
        event.is_deleted = False
        event.deleted_at = None
        for name in _CONTENT_FIELDS:
            if getattr(event, name) != content[name]:
                setattr(event, name, content[name])
                changed = True
        if changed:
            result.updated += 1
        else:
            result.unchanged += 1

    if page.full_snapshot:
        for external_id, event in existing.items():
            if external_id in seen or not page.covers(event.start_time):
                continue
            if _soft_delete(event, now):
                result.deleted += 1


def _record_sync_error(source_id: str, message: str) -> None:
    source = db.session.get(CalendarSource, source_id)
    if source is None:
        return
    source.last_sync_error = message[:512]
    db.session.commit()


def import_calendar_source(source_id: str, provider: Optional[CalendarProvider] = None) -> ImportResult:
    """
    Import one calendar source and recompute its classifications.

    The batch is all-or-nothing: a provider failure or a malformed event rolls
    back, records `last_sync_error` and re-raises.
    """
    source = db.session.get(CalendarSource, source_id)
    if source is None:
        raise NotFoundError("calendar_source_not_found", source_id)
    if not source.active:
        raise ValidationError("calendar_source_inactive", source_id)

    result = ImportResult(calendar_source_id=source_id)
    try:
        provider = provider or provider_for_source(source)
        page = provider.list_events(source.provider_calendar_id, since_cursor=source.sync_cursor)
        events = [] if page.not_modified else validate_provider_events(source_id, page.events)

        source = lock_calendar_source(source_id)
        if page.not_modified:
            result.not_modified = True
        else:
            _apply_page(source, page, events, result)
            db.session.flush()
            result.relabeled = relabel_calendar_source(source_id)

        source.sync_cursor = page.next_cursor or (source.sync_cursor if page.not_modified else None)
        source.last_synced_at = datetime.utcnow()
        source.last_sync_error = None

        enqueue_outbox(
            CALENDAR_SOURCE_IMPORTED,
            {
                "calendar_source_id": source_id,
                "child_id": source.child_id,
                "created": result.created,
                "updated": result.updated,
                "deleted": result.deleted,
                "relabeled": result.relabeled,
                "synced_at": source.last_synced_at.isoformat(),
            },
            child_id=source.child_id,
        )
        db.session.commit()
    except UpstreamImportError as e:
        db.session.rollback()
        logger.error(f"Import failed for calendar source {source_id}: {e.message}")
        _record_sync_error(source_id, e.message)
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Imported calendar source {source_id}: {result.to_dict()}")
    return result


def import_all_sources(child_id: Optional[str] = None) -> ImportSummary:
    """
    Import every active calendar source, optionally for one child.

    Each source is its own transaction; a failing source is reported in
    `failures` and the others still import.
    """
    query = CalendarSource.query.filter(CalendarSource.active.is_(True))
    if child_id is not None:
        query = query.filter(CalendarSource.child_id == child_id)
    source_ids = [source.id for source in query.order_by(CalendarSource.created_at, CalendarSource.id).all()]

    summary = ImportSummary()
    for source_id in source_ids:
        try:
            summary.results.append(import_calendar_source(source_id))
        except HomeStayError as e:
            logger.warning(f"Sync failed for calendar source {source_id}: {e}")
            summary.failures[source_id] = getattr(e, "message", None) or str(e)

    logger.info(
        f"Calendar bulk sync complete: {len(summary.results)} imported, {len(summary.failures)} failed"
    )
    return summary


__all__ = [
    "ImportResult",
    "ImportSummary",
    "candidate_reason",
    "import_all_sources",
    "import_calendar_source",
    "validate_provider_events",
]
