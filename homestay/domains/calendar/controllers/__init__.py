"""Calendar domain controllers."""

from homestay.domains.calendar.controllers.calendar_api import calendar_api_bp

__all__ = ["calendar_api_bp"]
