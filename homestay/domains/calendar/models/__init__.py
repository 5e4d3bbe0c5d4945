"""Calendar domain models."""

from homestay.domains.calendar.models.calendar_event import CalendarEvent
from homestay.domains.calendar.models.calendar_source import CalendarConnection, CalendarSource
from homestay.domains.calendar.models.mapping_rule import IgnoreEntry, MappingRule

__all__ = [
    "CalendarConnection",
    "CalendarEvent",
    "CalendarSource",
    "IgnoreEntry",
    "MappingRule",
]
