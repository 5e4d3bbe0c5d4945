"""Calendar provider interface shared by the Google and ICS implementations."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from homestay.domains.calendar.schemas import ProviderCalendar


@dataclass
class ProviderEventPage:
    """
    Result of one `list_events` call.

    `events` holds normalized event payloads (dicts shaped like
    `ProviderEvent`); the importer validates them as one batch. `full_snapshot`
    is True when the page lists every live event of the calendar, so anything
    missing from it was removed upstream. A snapshot bounded by
    `window_start`/`window_end` only speaks for events starting inside it.
    """

    events: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    not_modified: bool = False
    full_snapshot: bool = False
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    def covers(self, start: datetime) -> bool:
        """Whether an event starting at `start` should appear in this snapshot."""
        if self.window_start is not None and start < self.window_start:
            return False
        return self.window_end is None or start <= self.window_end


class CalendarProvider(Protocol):
    def list_calendars(self) -> List[ProviderCalendar]:
        ...

    def list_events(self, calendar_id: str, since_cursor: Optional[str] = None) -> ProviderEventPage:
        ...


def shift_months(value: datetime, months: int) -> datetime:
    """Move `value` by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
