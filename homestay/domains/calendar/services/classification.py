"""
Rule matcher: pure functions deciding what a calendar event represents.

Nothing here touches the database. Callers pass events and rules (models or
any objects with the same attributes) and write the returned Classification
back themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from homestay.domains.calendar.constants import (
    CLASSIFICATION_HOME_STAY,
    CLASSIFICATION_IGNORED,
    CLASSIFICATION_UNCLASSIFIED,
    MATCH_TYPE_EVENT_ID,
    MATCH_TYPE_SPECIFICITY,
    MATCH_TYPE_TITLE_EXACT,
)

logger = logging.getLogger(__name__)

IgnoreKey = Tuple[str, str]


@dataclass(frozen=True)
class Classification:
    classification: str = CLASSIFICATION_UNCLASSIFIED
    assigned_home_id: Optional[str] = None
    mapping_rule_id: Optional[int] = None
    proposed_home_id: Optional[str] = None

    def differs_from(self, event) -> bool:
        """True when writing this value would change the event's cached state."""
        return (
            event.classification != self.classification
            or event.assigned_home_id != self.assigned_home_id
            or event.mapping_rule_id != self.mapping_rule_id
            or event.proposed_home_id != self.proposed_home_id
        )

    def apply_to(self, event) -> None:
        event.classification = self.classification
        event.assigned_home_id = self.assigned_home_id
        event.mapping_rule_id = self.mapping_rule_id
        event.proposed_home_id = self.proposed_home_id


UNCLASSIFIED = Classification()
IGNORED = Classification(classification=CLASSIFICATION_IGNORED)


def ignore_keys(entries: Iterable) -> Set[IgnoreKey]:
    """Index ignore entries by (title, calendar_source_id)."""
    return {(entry.title, entry.calendar_source_id) for entry in entries}


def rule_matches(rule, event) -> bool:
    if rule.calendar_source_id != event.calendar_source_id or rule.child_id != event.child_id:
        return False
    if rule.match_type == MATCH_TYPE_EVENT_ID:
        return event.external_id == rule.match_value
    if rule.match_type == MATCH_TYPE_TITLE_EXACT:
        return event.title == rule.match_value
    return False


def match(rule, events: Iterable) -> List:
    """Return the events matched by `rule`, preserving input order."""
    return [event for event in events if rule_matches(rule, event)]


def _recency_key(rule):
    return (rule.created_at, rule.id or 0)


def select_rule(event, rules: Sequence):
    """
    Pick the winning rule for an event, or None.

    The most specific match type wins. Between rules of equal specificity the
    most recently created one wins and the tie is logged.
    """
    candidates = [rule for rule in rules if rule_matches(rule, event)]
    if not candidates:
        return None

    best = max(MATCH_TYPE_SPECIFICITY[rule.match_type] for rule in candidates)
    tied = [rule for rule in candidates if MATCH_TYPE_SPECIFICITY[rule.match_type] == best]
    tied.sort(key=_recency_key, reverse=True)
    if len(tied) > 1:
        logger.warning(
            "Ambiguous mapping rules %s for event %s (%r); using newest rule %s",
            [rule.id for rule in tied],
            event.external_id,
            event.title,
            tied[0].id,
        )
    return tied[0]


def is_confirmed(rule, event) -> bool:
    return bool(rule.auto_confirm) or event.confirmed_rule_id == rule.id


def classify(event, rules: Sequence, ignores: Set[IgnoreKey]) -> Classification:
    """
    Compute the classification of one event from the current rules and ignores.

    `ignores` is a set of (title, calendar_source_id) keys, see `ignore_keys`.
    """
    rule = select_rule(event, rules)
    if rule is not None:
        if is_confirmed(rule, event):
            return Classification(
                classification=CLASSIFICATION_HOME_STAY,
                assigned_home_id=rule.home_id,
                mapping_rule_id=rule.id,
            )
        return Classification(
            classification=CLASSIFICATION_UNCLASSIFIED,
            mapping_rule_id=rule.id,
            proposed_home_id=rule.home_id,
        )
    if (event.title, event.calendar_source_id) in ignores:
        return IGNORED
    return UNCLASSIFIED


__all__ = [
    "Classification",
    "classify",
    "ignore_keys",
    "is_confirmed",
    "match",
    "rule_matches",
    "select_rule",
]
