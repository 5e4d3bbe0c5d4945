"""Candidate grouper: unclassified events bucketed by title for a human decision."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from homestay.domains.calendar.constants import (
    CLASSIFICATION_UNCLASSIFIED,
    MATCH_TYPE_EVENT_ID,
    MATCH_TYPE_TITLE_EXACT,
)
from homestay.domains.calendar.mappers import event_to_candidate
from homestay.domains.calendar.models import (
    CalendarEvent,
    CalendarSource,
    IgnoreEntry,
    MappingRule,
)
from homestay.domains.calendar.schemas import CandidateGroup

GroupKey = Tuple[str, str]

_DAY_NAMES = {
    "MO": "Mon",
    "TU": "Tue",
    "WE": "Wed",
    "TH": "Thu",
    "FR": "Fri",
    "SA": "Sat",
    "SU": "Sun",
}

_FREQ_RE = re.compile(r"FREQ=(\w+)")
_BYDAY_RE = re.compile(r"BYDAY=([^;]+)")


def describe_recurrence(rrule: Optional[str]) -> str:
    """Render an RRULE as a short label such as "Every Fri, Sat"."""
    if not rrule:
        return ""
    freq_match = _FREQ_RE.search(rrule)
    if not freq_match:
        return "Recurring"

    freq = freq_match.group(1)
    day_match = _BYDAY_RE.search(rrule)
    days = day_match.group(1).split(",") if day_match else []

    if freq == "WEEKLY" and days:
        return "Every " + ", ".join(_DAY_NAMES.get(day, day) for day in days)
    if freq == "DAILY":
        return "Every day"
    if freq == "WEEKLY":
        return "Every week"
    if freq == "MONTHLY":
        return "Every month"
    return "Recurring"


def _occurrence_label(count: int) -> str:
    return "1 occurrence" if count == 1 else f"{count} occurrences"


def _is_open_candidate(event, excluded: Set[GroupKey]) -> bool:
    return (
        event.classification == CLASSIFICATION_UNCLASSIFIED
        and not event.is_deleted
        and event.mapping_rule_id is None
        and (event.title, event.calendar_source_id) not in excluded
    )


def group_candidates(
    events: Iterable,
    title_rule_keys: Set[GroupKey],
    ignore_keys: Set[GroupKey],
    calendar_names: Optional[Mapping[str, str]] = None,
) -> List[CandidateGroup]:
    """
    Group unclassified events by (title, calendar_source_id).

    Events already covered by a title rule or an ignore entry, or carrying a
    proposal from a winning rule, never appear. Groups are ordered by their
    first occurrence, then title, then calendar source.
    """
    excluded = set(title_rule_keys) | set(ignore_keys)
    calendar_names = calendar_names or {}

    buckets: Dict[GroupKey, list] = {}
    for event in events:
        if not _is_open_candidate(event, excluded):
            continue
        buckets.setdefault((event.title, event.calendar_source_id), []).append(event)

    groups: List[CandidateGroup] = []
    for (title, source_id), members in buckets.items():
        members.sort(key=lambda e: (e.start_time, e.external_id))
        count = len(members)
        recurrence_rule = next((e.recurrence_rule for e in members if e.recurrence_rule), None)
        groups.append(
            CandidateGroup(
                title=title,
                calendar_source_id=source_id,
                calendar_name=calendar_names.get(source_id),
                child_id=members[0].child_id,
                candidates=[event_to_candidate(e) for e in members],
                occurrence_count=count,
                occurrence_label=_occurrence_label(count),
                recurrence_info=describe_recurrence(recurrence_rule) or None,
                suggested_match_type=MATCH_TYPE_TITLE_EXACT if count > 1 else MATCH_TYPE_EVENT_ID,
                first_start_time=members[0].start_time,
            )
        )

    groups.sort(key=lambda g: (g.first_start_time, g.title, g.calendar_source_id))
    return groups


def get_home_stay_candidates(
    child_id: Optional[str] = None,
    visible_child_ids: Optional[Sequence[str]] = None,
) -> List[CandidateGroup]:
    """
    Load unclassified events and group them.

    Scoped to `child_id` when given, else to `visible_child_ids` when given,
    else every child.
    """
    event_query = CalendarEvent.query.filter(
        CalendarEvent.classification == CLASSIFICATION_UNCLASSIFIED,
        CalendarEvent.is_deleted.is_(False),
        CalendarEvent.mapping_rule_id.is_(None),
    )
    rule_query = MappingRule.query.filter(MappingRule.match_type == MATCH_TYPE_TITLE_EXACT)
    ignore_query = IgnoreEntry.query
    source_query = CalendarSource.query

    if child_id is not None:
        scope = [child_id]
    elif visible_child_ids is not None:
        scope = list(visible_child_ids)
    else:
        scope = None

    if scope is not None:
        if not scope:
            return []
        event_query = event_query.filter(CalendarEvent.child_id.in_(scope))
        rule_query = rule_query.filter(MappingRule.child_id.in_(scope))
        ignore_query = ignore_query.filter(IgnoreEntry.child_id.in_(scope))
        source_query = source_query.filter(CalendarSource.child_id.in_(scope))

    title_rule_keys = {(rule.match_value, rule.calendar_source_id) for rule in rule_query.all()}
    ignored = {(entry.title, entry.calendar_source_id) for entry in ignore_query.all()}
    calendar_names = {source.id: source.name for source in source_query.all()}

    return group_candidates(event_query.all(), title_rule_keys, ignored, calendar_names)


__all__ = ["describe_recurrence", "get_home_stay_candidates", "group_candidates"]
