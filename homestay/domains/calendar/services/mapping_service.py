"""
Mapping engine: turns wizard decisions into rules and relabels events.

Every public mutation runs as one transaction. The calendar source row is
locked first so writers on the same source serialize; the counts returned to
callers are computed from the state read under that lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError

from homestay.domains.calendar.constants import (
    CLASSIFICATION_HOME_STAY,
    CLASSIFICATION_IGNORED,
    MATCH_TYPE_EVENT_ID,
    MATCH_TYPE_TITLE_EXACT,
    MATCH_TYPES,
    MAX_MATCH_VALUE_LENGTH,
    RESULTING_EVENT_TYPE_HOME_DAY,
)
from homestay.domains.calendar.errors import ConflictError, NotFoundError, ValidationError
from homestay.domains.calendar.events import (
    CALENDAR_CANDIDATES_IGNORED,
    CALENDAR_HOME_STAYS_CONFIRMED,
    CALENDAR_MAPPING_RULE_APPLIED,
    CALENDAR_MAPPING_RULE_DELETED,
)
from homestay.domains.calendar.models import (
    CalendarEvent,
    CalendarSource,
    IgnoreEntry,
    MappingRule,
)
from homestay.domains.calendar.services.candidate_service import get_home_stay_candidates
from homestay.domains.calendar.services.classification import classify, ignore_keys, match, select_rule
from homestay.domains.household.services import get_home
from homestay.extensions import db
from homestay.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MappingResult:
    rule: MappingRule
    events_updated: int


@dataclass(frozen=True)
class IgnoreResult:
    entry: IgnoreEntry
    ignored: int


@dataclass(frozen=True)
class _Change:
    event: CalendarEvent
    before_classification: str
    before_home_id: Optional[str]

    @property
    def assignment_changed(self) -> bool:
        return (
            self.event.classification != self.before_classification
            or self.event.assigned_home_id != self.before_home_id
        )


# --- Loading -----------------------------------------------------------------


def lock_calendar_source(calendar_source_id: str) -> CalendarSource:
    """Load a calendar source with a row lock held until the transaction ends."""
    source = (
        CalendarSource.query.filter(CalendarSource.id == calendar_source_id)
        .with_for_update()
        .one_or_none()
    )
    if source is None:
        raise NotFoundError("calendar_source_not_found", calendar_source_id)
    return source


def _active_events(calendar_source_id: str) -> List[CalendarEvent]:
    return (
        CalendarEvent.query.filter(
            CalendarEvent.calendar_source_id == calendar_source_id,
            CalendarEvent.is_deleted.is_(False),
        )
        .order_by(CalendarEvent.start_time, CalendarEvent.id)
        .all()
    )


def _title_rule_exists(child_id: str, calendar_source_id: str, title: str) -> bool:
    return (
        MappingRule.query.filter_by(
            child_id=child_id,
            calendar_source_id=calendar_source_id,
            match_type=MATCH_TYPE_TITLE_EXACT,
            match_value=title,
        ).first()
        is not None
    )


def _title_ignored(child_id: str, calendar_source_id: str, title: str) -> bool:
    return (
        IgnoreEntry.query.filter_by(
            child_id=child_id,
            calendar_source_id=calendar_source_id,
            title=title,
        ).first()
        is not None
    )


# --- Relabeling --------------------------------------------------------------


def _relabel(calendar_source_id: str, events: Optional[Sequence[CalendarEvent]] = None) -> List[_Change]:
    """Recompute the classification cache of every live event in a source."""
    if events is None:
        events = _active_events(calendar_source_id)
    rules = MappingRule.query.filter_by(calendar_source_id=calendar_source_id).all()
    ignores = ignore_keys(IgnoreEntry.query.filter_by(calendar_source_id=calendar_source_id).all())

    changes: List[_Change] = []
    for event in events:
        result = classify(event, rules, ignores)
        if not result.differs_from(event):
            continue
        change = _Change(event, event.classification, event.assigned_home_id)
        result.apply_to(event)
        changes.append(change)
    return changes


def relabel_calendar_source(calendar_source_id: str) -> int:
    """
    Recompute classifications for one calendar source.

    Returns the number of events whose cached state changed. Does not commit;
    the caller owns the transaction.
    """
    changes = _relabel(calendar_source_id)
    if changes:
        db.session.flush()
    return len(changes)


# --- Validation --------------------------------------------------------------


def _validate_source(source: CalendarSource, child_id: str) -> None:
    if not source.active:
        raise ValidationError("calendar_source_inactive", source.id)
    if source.child_id != child_id:
        raise ValidationError("child_mismatch", "calendar source is bound to another child")


def _validate_rule(
    source: CalendarSource,
    child_id: str,
    match_type: str,
    match_value: str,
    home_id: str,
    resulting_event_type: str,
) -> None:
    _validate_source(source, child_id)

    home = get_home(home_id) if home_id else None
    if home is None:
        raise NotFoundError("home_not_found", home_id)
    if not home.is_active:
        raise ValidationError("home_inactive", home_id)

    if match_type not in MATCH_TYPES:
        raise ValidationError("invalid_match_type", match_type)
    if not match_value:
        raise ValidationError("invalid_match_value", "match value is empty")
    if len(match_value) > MAX_MATCH_VALUE_LENGTH:
        raise ValidationError("invalid_match_value", "match value is too long")
    if match_type == MATCH_TYPE_EVENT_ID and match_value != match_value.strip():
        raise ValidationError("invalid_match_value", "event id has surrounding whitespace")
    if resulting_event_type != RESULTING_EVENT_TYPE_HOME_DAY:
        raise ValidationError("unsupported_event_type", resulting_event_type)

    if match_type == MATCH_TYPE_TITLE_EXACT:
        if _title_ignored(child_id, source.id, match_value):
            raise ValidationError("title_ignored", match_value)
    else:
        event = CalendarEvent.query.filter_by(
            calendar_source_id=source.id, external_id=match_value
        ).first()
        if event is not None and _title_ignored(child_id, source.id, event.title):
            raise ValidationError("title_ignored", event.title)


# --- Transactions ------------------------------------------------------------


def _with_conflict_retry(operation: Callable[[], T], description: str) -> T:
    """
    Run `operation` as one transaction, retrying when it loses a uniqueness race.

    Any other failure rolls back and propagates.
    """
    retries = current_app.config.get("MAPPING_CONFLICT_RETRIES", 1)
    for attempt in range(retries + 1):
        try:
            result = operation()
            db.session.commit()
            return result
        except IntegrityError as err:
            db.session.rollback()
            logger.warning(f"Conflict while {description} (attempt {attempt + 1}): {err.orig}")
        except Exception:
            db.session.rollback()
            raise
    raise ConflictError(f"concurrent update while {description}")


def _upsert_rule(
    child_id: str,
    calendar_source_id: str,
    match_type: str,
    match_value: str,
    home_id: str,
    resulting_event_type: str,
    auto_confirm: bool,
) -> MappingRule:
    rule = MappingRule.query.filter_by(
        child_id=child_id,
        calendar_source_id=calendar_source_id,
        match_type=match_type,
        match_value=match_value,
    ).one_or_none()

    if rule is None:
        rule = MappingRule(
            child_id=child_id,
            calendar_source_id=calendar_source_id,
            match_type=match_type,
            match_value=match_value,
            home_id=home_id,
            resulting_event_type=resulting_event_type,
            auto_confirm=auto_confirm,
        )
        db.session.add(rule)
    else:
        if rule.home_id != home_id:
            logger.info(f"Replacing home {rule.home_id} with {home_id} on mapping rule {rule.id}")
        rule.home_id = home_id
        rule.auto_confirm = auto_confirm
        rule.updated_at = datetime.utcnow()
    db.session.flush()
    return rule


def create_mapping_rule(
    child_id: str,
    calendar_source_id: str,
    match_type: str,
    match_value: str,
    home_id: str,
    resulting_event_type: str = RESULTING_EVENT_TYPE_HOME_DAY,
    auto_confirm: bool = False,
) -> MappingResult:
    """
    Create (or replace) a mapping rule and relabel its calendar source.

    Every event the rule matches is marked confirmed for it, past and future.
    `events_updated` counts events whose (classification, assigned home)
    changed; repeating the same call reports 0.
    """

    def _apply() -> MappingResult:
        source = lock_calendar_source(calendar_source_id)
        _validate_rule(source, child_id, match_type, match_value, home_id, resulting_event_type)

        rule = _upsert_rule(
            child_id,
            calendar_source_id,
            match_type,
            match_value,
            home_id,
            resulting_event_type,
            auto_confirm,
        )

        events = _active_events(calendar_source_id)
        rules = MappingRule.query.filter_by(calendar_source_id=calendar_source_id).all()
        # A more specific rule keeps its own confirmation.
        for event in match(rule, events):
            if select_rule(event, rules) is rule:
                event.confirmed_rule_id = rule.id

        changes = _relabel(calendar_source_id, events)
        events_updated = sum(1 for change in changes if change.assignment_changed)

        enqueue_outbox(
            CALENDAR_MAPPING_RULE_APPLIED,
            {
                "rule_id": rule.id,
                "child_id": child_id,
                "calendar_source_id": calendar_source_id,
                "match_type": match_type,
                "match_value": match_value,
                "home_id": home_id,
                "auto_confirm": auto_confirm,
                "events_updated": events_updated,
            },
            child_id=child_id,
        )
        return MappingResult(rule=rule, events_updated=events_updated)

    result = _with_conflict_retry(_apply, f"creating mapping rule for source {calendar_source_id}")
    logger.info(
        f"Mapping rule {result.rule.id} ({match_type}={match_value!r}) applied to "
        f"source {calendar_source_id}: {result.events_updated} events updated"
    )
    return result


def delete_mapping_rule(rule_id: int, child_id: Optional[str] = None) -> int:
    """
    Delete a mapping rule and relabel its calendar source.

    Events the rule labelled fall back to the next matching rule, or become
    candidates again. Confirmations recorded for the rule are dropped.
    Returns the number of events whose (classification, assigned home) changed.
    """

    def _apply() -> int:
        rule = db.session.get(MappingRule, rule_id)
        if rule is None or (child_id is not None and rule.child_id != child_id):
            raise NotFoundError("mapping_rule_not_found", str(rule_id))
        calendar_source_id = rule.calendar_source_id
        rule_child_id = rule.child_id
        lock_calendar_source(calendar_source_id)

        events = _active_events(calendar_source_id)
        for event in CalendarEvent.query.filter(
            CalendarEvent.calendar_source_id == calendar_source_id,
            (CalendarEvent.mapping_rule_id == rule_id) | (CalendarEvent.confirmed_rule_id == rule_id),
        ).all():
            if event.confirmed_rule_id == rule_id:
                event.confirmed_rule_id = None
            if event.mapping_rule_id == rule_id:
                event.mapping_rule_id = None
        # References go first; sqlite may run without foreign key enforcement.
        db.session.flush()
        db.session.delete(rule)
        db.session.flush()

        changes = _relabel(calendar_source_id, events)
        events_updated = sum(1 for change in changes if change.assignment_changed)

        enqueue_outbox(
            CALENDAR_MAPPING_RULE_DELETED,
            {
                "rule_id": rule_id,
                "child_id": rule_child_id,
                "calendar_source_id": calendar_source_id,
                "events_updated": events_updated,
            },
            child_id=rule_child_id,
        )
        return events_updated

    events_updated = _with_conflict_retry(_apply, f"deleting mapping rule {rule_id}")
    logger.info(f"Mapping rule {rule_id} deleted: {events_updated} events updated")
    return events_updated


def ignore_candidates_by_title(title: str, calendar_source_id: str, child_id: str) -> IgnoreResult:
    """
    Record that events with this title in this source are not stays.

    Returns how many events became ignored. Titles with a title rule cannot be
    ignored, and a title that is already ignored reports 0.
    """

    def _apply() -> IgnoreResult:
        source = lock_calendar_source(calendar_source_id)
        _validate_source(source, child_id)
        if not title:
            raise ValidationError("invalid_title", "title is empty")
        if len(title) > MAX_MATCH_VALUE_LENGTH:
            raise ValidationError("invalid_title", "title is too long")
        if _title_rule_exists(child_id, calendar_source_id, title):
            raise ValidationError("title_has_rule", title)

        entry = IgnoreEntry.query.filter_by(
            child_id=child_id, calendar_source_id=calendar_source_id, title=title
        ).one_or_none()
        if entry is None:
            entry = IgnoreEntry(child_id=child_id, calendar_source_id=calendar_source_id, title=title)
            db.session.add(entry)
            db.session.flush()

        changes = _relabel(calendar_source_id)
        ignored = sum(1 for change in changes if change.event.classification == CLASSIFICATION_IGNORED)

        enqueue_outbox(
            CALENDAR_CANDIDATES_IGNORED,
            {
                "ignore_entry_id": entry.id,
                "child_id": child_id,
                "calendar_source_id": calendar_source_id,
                "title": title,
                "ignored": ignored,
            },
            child_id=child_id,
        )
        return IgnoreResult(entry=entry, ignored=ignored)

    return _with_conflict_retry(_apply, f"ignoring {title!r} in source {calendar_source_id}")


def confirm_proposed_stays(calendar_source_id: str, event_ids: Optional[Sequence[int]] = None) -> int:
    """
    Confirm stays proposed by rules without auto-confirm.

    Confirms every proposal in the source, or only `event_ids` when given.
    Returns the number of events that became home stays.
    """

    def _apply() -> int:
        source = lock_calendar_source(calendar_source_id)
        query = CalendarEvent.query.filter(
            CalendarEvent.calendar_source_id == calendar_source_id,
            CalendarEvent.is_deleted.is_(False),
            CalendarEvent.mapping_rule_id.isnot(None),
            CalendarEvent.proposed_home_id.isnot(None),
        )
        if event_ids is not None:
            if not event_ids:
                return 0
            query = query.filter(CalendarEvent.id.in_(list(event_ids)))

        for event in query.all():
            event.confirmed_rule_id = event.mapping_rule_id

        changes = _relabel(calendar_source_id)
        confirmed = sum(1 for change in changes if change.event.classification == CLASSIFICATION_HOME_STAY)

        if confirmed:
            enqueue_outbox(
                CALENDAR_HOME_STAYS_CONFIRMED,
                {
                    "calendar_source_id": calendar_source_id,
                    "child_id": source.child_id,
                    "confirmed": confirmed,
                },
                child_id=source.child_id,
            )
        return confirmed

    return _with_conflict_retry(_apply, f"confirming stays in source {calendar_source_id}")


def list_mapping_rules(
    child_id: Optional[str] = None,
    calendar_source_id: Optional[str] = None,
) -> List[MappingRule]:
    """List mapping rules, newest first."""
    query = MappingRule.query
    if child_id is not None:
        query = query.filter(MappingRule.child_id == child_id)
    if calendar_source_id is not None:
        query = query.filter(MappingRule.calendar_source_id == calendar_source_id)
    return query.order_by(MappingRule.created_at.desc(), MappingRule.id.desc()).all()


__all__ = [
    "IgnoreResult",
    "MappingResult",
    "confirm_proposed_stays",
    "create_mapping_rule",
    "delete_mapping_rule",
    "get_home_stay_candidates",
    "ignore_candidates_by_title",
    "list_mapping_rules",
    "lock_calendar_source",
    "relabel_calendar_source",
]
