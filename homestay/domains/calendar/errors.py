"""Calendar domain exceptions. Services raise these; controllers map them to HTTP."""

from __future__ import annotations

from typing import Optional


class HomeStayError(Exception):
    """Base class for calendar mapping errors."""


class ValidationError(HomeStayError):
    """Input rejected before any write."""

    def __init__(self, code: str, detail: Optional[str] = None) -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)


class ConflictError(HomeStayError):
    """A concurrent writer won a uniqueness race and the retry also lost."""

    code = "conflict"


class UpstreamImportError(HomeStayError):
    """A provider failed or returned data that cannot be imported."""

    code = "upstream_error"

    def __init__(self, source_id: Optional[str], message: str) -> None:
        self.source_id = source_id
        self.message = message
        super().__init__(message)


class GoogleCalendarError(UpstreamImportError):
    pass


class TokenRefreshError(UpstreamImportError):
    pass


class IcsFeedError(UpstreamImportError):
    pass


class NotFoundError(ValidationError):
    """A referenced calendar source, home or event does not exist."""
