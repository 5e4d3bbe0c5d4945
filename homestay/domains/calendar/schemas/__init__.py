"""Calendar domain Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from homestay.domains.calendar.constants import EVENT_STATUS_CANCELLED, RESULTING_EVENT_TYPE_HOME_DAY


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt_timezone.utc).replace(tzinfo=None)


# --- Provider payloads -------------------------------------------------------


class ProviderCalendar(BaseModel):
    """One calendar offered by a provider account."""

    id: str = Field(min_length=1)
    name: str
    color: Optional[str] = None
    is_primary: bool = False


class ProviderEvent(BaseModel):
    """
    Normalized event payload returned by a calendar provider.

    Datetimes are stored as naive UTC. A payload that fails validation makes
    the whole import batch fail.
    """

    external_id: str = Field(min_length=1, max_length=255)
    title: str = Field(default="Untitled Event", max_length=255)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    recurrence_rule: Optional[str] = Field(default=None, max_length=512)
    recurrence_id: Optional[str] = None
    status: str = "confirmed"
    updated: Optional[datetime] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=512)

    @field_validator("start", "end", "updated")
    @classmethod
    def _normalize_datetime(cls, value):
        return _to_naive_utc(value)

    @model_validator(mode="after")
    def _check_range(self):
        # Cancellations from incremental syncs carry only an id.
        if self.is_cancelled:
            return self
        if self.start is None or self.end is None:
            raise ValueError("event start and end are required")
        if self.end <= self.start:
            raise ValueError("event end must be after start")
        return self

    @property
    def is_cancelled(self) -> bool:
        return self.status == EVENT_STATUS_CANCELLED


# --- Requests ----------------------------------------------------------------


class MappingRuleCreate(BaseModel):
    """Request body for creating a mapping rule from a wizard decision."""

    child_id: str = Field(min_length=1)
    calendar_source_id: str = Field(min_length=1)
    match_type: Literal["event_id", "title_exact"]
    match_value: str = Field(min_length=1)
    home_id: str = Field(min_length=1)
    resulting_event_type: str = RESULTING_EVENT_TYPE_HOME_DAY
    auto_confirm: bool = False


class IgnoreCandidatesRequest(BaseModel):
    """Request body for ignoring a candidate group."""

    title: str = Field(min_length=1)
    calendar_source_id: str = Field(min_length=1)
    child_id: str = Field(min_length=1)


class ConfirmStaysRequest(BaseModel):
    """Request body for confirming proposed stays."""

    calendar_source_id: str = Field(min_length=1)
    event_ids: Optional[list[int]] = None


class ConnectIcsSourceRequest(BaseModel):
    """Request body for connecting a published calendar link."""

    child_id: str = Field(min_length=1)
    feed_url: str = Field(min_length=1, max_length=2048)
    name: Optional[str] = Field(default=None, max_length=255)


class SaveGoogleSourcesRequest(BaseModel):
    """Request body for selecting the Google calendars a child syncs."""

    child_id: str = Field(min_length=1)
    connection_id: str = Field(min_length=1)
    calendar_ids: list[str]


class ReplaceFeedUrlRequest(BaseModel):
    feed_url: str = Field(min_length=1, max_length=2048)


class MappingRuleListParams(BaseModel):
    """Query parameters for listing mapping rules."""

    child_id: Optional[str] = None
    calendar_source_id: Optional[str] = None


# --- Responses ---------------------------------------------------------------


class MappingRuleResponse(BaseModel):
    """Response schema for a mapping rule."""

    id: int
    child_id: str
    calendar_source_id: str
    match_type: str
    match_value: str
    home_id: str
    resulting_event_type: str
    auto_confirm: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IgnoreEntryResponse(BaseModel):
    id: int
    child_id: str
    calendar_source_id: str
    title: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CandidateEvent(BaseModel):
    """One unclassified occurrence shown inside a candidate group."""

    id: int
    external_id: str
    title: str
    start_time: datetime
    end_time: datetime
    all_day: bool
    candidate_reason: Optional[str] = None
    recurrence_rule: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CandidateGroup(BaseModel):
    """Unclassified events sharing a title within one calendar source."""

    title: str
    calendar_source_id: str
    calendar_name: Optional[str] = None
    child_id: str
    candidates: list[CandidateEvent]
    occurrence_count: int
    occurrence_label: str
    recurrence_info: Optional[str] = None
    suggested_match_type: Literal["event_id", "title_exact"]
    first_start_time: datetime

    model_config = ConfigDict(frozen=True)


class CalendarSourceResponse(BaseModel):
    """
    Response schema for a calendar source.

    ICS feed links are secrets; only their masked form leaves the API.
    """

    id: str
    child_id: str
    provider: str
    calendar: str
    name: str
    color: Optional[str] = None
    is_primary: bool
    active: bool
    connection_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None


class ImportResultResponse(BaseModel):
    calendar_source_id: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    relabeled: int = 0
    not_modified: bool = False


__all__ = [
    "CalendarSourceResponse",
    "CandidateEvent",
    "CandidateGroup",
    "ConfirmStaysRequest",
    "ConnectIcsSourceRequest",
    "IgnoreCandidatesRequest",
    "IgnoreEntryResponse",
    "ImportResultResponse",
    "MappingRuleCreate",
    "MappingRuleListParams",
    "MappingRuleResponse",
    "ProviderCalendar",
    "ProviderEvent",
    "ReplaceFeedUrlRequest",
    "SaveGoogleSourcesRequest",
]
