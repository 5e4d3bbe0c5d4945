"""Calendar domain tasks: on-demand sync and outbox delivery."""

from __future__ import annotations

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def sync_all_calendars(child_id: Optional[str] = None) -> Dict[str, object]:
    """
    Import every active calendar source, optionally for one child.

    Returns:
        Dict with totals across sources and the per-source failures
    """
    from homestay.domains.calendar.services.import_service import import_all_sources

    summary = import_all_sources(child_id=child_id)
    totals: Dict[str, object] = {
        "synced_sources": len(summary.results),
        "created": sum(r.created for r in summary.results),
        "updated": sum(r.updated for r in summary.results),
        "deleted": sum(r.deleted for r in summary.results),
        "relabeled": sum(r.relabeled for r in summary.results),
        "not_modified": sum(1 for r in summary.results if r.not_modified),
        "errors": len(summary.failures),
        "failures": dict(summary.failures),
    }
    return totals


def sync_calendar_source(source_id: str) -> dict:
    """Import one calendar source and return its counts."""
    from homestay.domains.calendar.services.import_service import import_calendar_source

    return import_calendar_source(source_id).to_dict()


def dispatch_outbox(limit: int = 50) -> int:
    """Publish ready outbox messages to the event bus; returns the number sent."""
    from homestay.platform.outbox import dispatch_ready

    sent = dispatch_ready(limit=limit)
    logger.info(f"Dispatched {len(sent)} outbox messages")
    return len(sent)
