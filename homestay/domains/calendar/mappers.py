"""Calendar domain mappers: model ↔ DTO converters."""

from __future__ import annotations

from homestay.domains.calendar.constants import PROVIDER_ICS
from homestay.domains.calendar.models import CalendarEvent, CalendarSource, IgnoreEntry, MappingRule
from homestay.domains.calendar.schemas import (
    CalendarSourceResponse,
    CandidateEvent,
    IgnoreEntryResponse,
    MappingRuleResponse,
)
from homestay.domains.calendar.services.providers.ics import mask_feed_url


def mapping_rule_to_response(rule: MappingRule) -> MappingRuleResponse:
    """Convert MappingRule model to response DTO."""
    return MappingRuleResponse.model_validate(rule)


def ignore_entry_to_response(entry: IgnoreEntry) -> IgnoreEntryResponse:
    return IgnoreEntryResponse.model_validate(entry)


def calendar_source_to_response(source: CalendarSource) -> CalendarSourceResponse:
    """Convert CalendarSource model to response DTO, masking ICS feed links."""
    calendar = source.provider_calendar_id
    if source.provider == PROVIDER_ICS:
        calendar = mask_feed_url(calendar)
    return CalendarSourceResponse(
        id=source.id,
        child_id=source.child_id,
        provider=source.provider,
        calendar=calendar,
        name=source.name,
        color=source.color,
        is_primary=source.is_primary,
        active=source.active,
        connection_id=source.connection_id,
        last_synced_at=source.last_synced_at,
        last_sync_error=source.last_sync_error,
    )


def event_to_candidate(event: CalendarEvent) -> CandidateEvent:
    """Convert an unclassified CalendarEvent to the candidate DTO."""
    return CandidateEvent(
        id=event.id,
        external_id=event.external_id,
        title=event.title,
        start_time=event.start_time,
        end_time=event.end_time,
        all_day=event.all_day,
        candidate_reason=event.candidate_reason,
        recurrence_rule=event.recurrence_rule,
    )
