"""Calendar provider implementations and selection."""

from __future__ import annotations

from homestay.domains.calendar.constants import PROVIDER_GOOGLE, PROVIDER_ICS
from homestay.domains.calendar.errors import TokenRefreshError, UpstreamImportError
from homestay.domains.calendar.models import CalendarSource
from homestay.domains.calendar.services.providers.base import CalendarProvider, ProviderEventPage
from homestay.domains.calendar.services.providers.google import (
    GoogleCalendarProvider,
    get_valid_access_token,
)
from homestay.domains.calendar.services.providers.ics import IcsFeedProvider


def provider_for_source(source: CalendarSource) -> CalendarProvider:
    """Build the provider that reads `source`, refreshing Google credentials when needed."""
    if source.provider == PROVIDER_GOOGLE:
        if source.connection is None:
            raise TokenRefreshError(source.id, "Calendar source has no Google connection")
        try:
            access_token = get_valid_access_token(source.connection)
        except TokenRefreshError as e:
            raise TokenRefreshError(source.id, e.message) from e
        return GoogleCalendarProvider(access_token, source_id=source.id)
    if source.provider == PROVIDER_ICS:
        return IcsFeedProvider(feed_url=source.provider_calendar_id, source_id=source.id)
    raise UpstreamImportError(source.id, f"Unsupported calendar provider {source.provider!r}")


__all__ = [
    "CalendarProvider",
    "GoogleCalendarProvider",
    "IcsFeedProvider",
    "ProviderEventPage",
    "provider_for_source",
]
