"""Tests for candidate grouping and recurrence labels."""

from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from homestay.domains.calendar.constants import (
    CLASSIFICATION_IGNORED,
    CLASSIFICATION_UNCLASSIFIED,
    MATCH_TYPE_EVENT_ID,
    MATCH_TYPE_TITLE_EXACT,
)
from homestay.domains.calendar.models import CalendarSource, IgnoreEntry
from homestay.domains.calendar.services.candidate_service import (
    describe_recurrence,
    get_home_stay_candidates,
    group_candidates,
)
from homestay.domains.household.models import Child
from homestay.extensions import db

_counter = iter(range(1, 10_000))


def _event(title, start, source_id="src-1", external_id=None, **overrides):
    values = dict(
        id=next(_counter),
        external_id=external_id or f"{title}-{start:%Y%m%d}",
        title=title,
        calendar_source_id=source_id,
        child_id="child-1",
        start_time=start,
        end_time=start + timedelta(days=2),
        all_day=True,
        candidate_reason="all_day",
        recurrence_rule=None,
        classification=CLASSIFICATION_UNCLASSIFIED,
        is_deleted=False,
        mapping_rule_id=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.unit
class TestDescribeRecurrence:
    def test_weekly_with_days(self):
        assert describe_recurrence("FREQ=WEEKLY;BYDAY=FR,SA") == "Every Fri, Sat"

    def test_plain_frequencies(self):
        assert describe_recurrence("FREQ=DAILY") == "Every day"
        assert describe_recurrence("FREQ=WEEKLY;INTERVAL=2") == "Every week"
        assert describe_recurrence("FREQ=MONTHLY;BYMONTHDAY=1") == "Every month"

    def test_unknown_or_missing(self):
        assert describe_recurrence("FREQ=YEARLY") == "Recurring"
        assert describe_recurrence("INTERVAL=2") == "Recurring"
        assert describe_recurrence(None) == ""


@pytest.mark.unit
class TestGroupCandidates:
    """Pure grouping over already-loaded events."""

    def test_groups_by_title_and_source(self):
        events = [
            _event("Dad's", datetime(2026, 3, 13)),
            _event("Dad's", datetime(2026, 3, 6)),
            _event("Dad's", datetime(2026, 3, 6), source_id="src-2"),
            _event("Camp", datetime(2026, 7, 1)),
        ]
        groups = group_candidates(events, set(), set(), {"src-1": "Family"})

        assert [(g.title, g.calendar_source_id) for g in groups] == [
            ("Dad's", "src-1"),
            ("Dad's", "src-2"),
            ("Camp", "src-1"),
        ]
        dads = groups[0]
        assert dads.occurrence_count == 2
        assert dads.occurrence_label == "2 occurrences"
        assert dads.suggested_match_type == MATCH_TYPE_TITLE_EXACT
        assert dads.calendar_name == "Family"
        assert [c.start_time for c in dads.candidates] == [datetime(2026, 3, 6), datetime(2026, 3, 13)]
        assert groups[1].calendar_name is None

    def test_single_occurrence_suggests_event_id(self):
        groups = group_candidates([_event("Camp", datetime(2026, 7, 1))], set(), set())
        assert groups[0].occurrence_label == "1 occurrence"
        assert groups[0].suggested_match_type == MATCH_TYPE_EVENT_ID

    def test_excludes_titles_with_rules_or_ignores(self):
        events = [
            _event("Dad's", datetime(2026, 3, 6)),
            _event("Soccer", datetime(2026, 3, 7)),
            _event("Camp", datetime(2026, 7, 1)),
        ]
        groups = group_candidates(events, {("Dad's", "src-1")}, {("Soccer", "src-1")})
        assert [g.title for g in groups] == ["Camp"]

    def test_excludes_classified_deleted_and_proposed_events(self):
        events = [
            _event("Camp", datetime(2026, 7, 1), classification=CLASSIFICATION_IGNORED),
            _event("Camp", datetime(2026, 7, 2), is_deleted=True),
            _event("Camp", datetime(2026, 7, 3), mapping_rule_id=4),
            _event("Camp", datetime(2026, 7, 4)),
        ]
        groups = group_candidates(events, set(), set())
        assert len(groups) == 1
        assert groups[0].occurrence_count == 1
        assert groups[0].first_start_time == datetime(2026, 7, 4)

    def test_recurrence_label_from_any_member(self):
        events = [
            _event("Dad's", datetime(2026, 3, 6)),
            _event("Dad's", datetime(2026, 3, 13), recurrence_rule="FREQ=WEEKLY;BYDAY=FR"),
        ]
        groups = group_candidates(events, set(), set())
        assert groups[0].recurrence_info == "Every Fri"


@pytest.mark.integration
class TestGetHomeStayCandidates:
    """Loading candidates from the database."""

    def test_scopes_to_child(self, source, make_event):
        other_child = Child(name="Leo")
        db.session.add(other_child)
        db.session.commit()
        other_source = CalendarSource(
            child_id=other_child.id,
            provider="ics",
            provider_calendar_id="https://calendar.example.com/leo.ics",
            name="Leo",
        )
        db.session.add(other_source)
        db.session.commit()

        make_event("a1", "Dad's", datetime(2026, 3, 6), all_day=True)
        make_event("b1", "Grandma", datetime(2026, 3, 6), calendar_source_id=other_source.id, child_id=other_child.id)

        mine = get_home_stay_candidates(child_id=source.child_id)
        assert [g.title for g in mine] == ["Dad's"]
        assert mine[0].calendar_name == "Family"

        everyone = get_home_stay_candidates()
        assert {g.title for g in everyone} == {"Dad's", "Grandma"}

        assert get_home_stay_candidates(visible_child_ids=[other_child.id])[0].title == "Grandma"
        assert get_home_stay_candidates(visible_child_ids=[]) == []

    def test_ignored_title_is_hidden(self, source, make_event):
        make_event("s1", "Soccer", datetime(2026, 3, 7))
        db.session.add(IgnoreEntry(child_id=source.child_id, calendar_source_id=source.id, title="Soccer"))
        db.session.commit()

        assert get_home_stay_candidates(child_id=source.child_id) == []
