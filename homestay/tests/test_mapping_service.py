"""
Tests for the mapping engine.

Covers rule creation and replacement, precedence between match types,
retroactive and future relabeling, ignores, confirmation and the outbox.
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

pytestmark = pytest.mark.integration

from homestay.domains.calendar.constants import (
    CLASSIFICATION_HOME_STAY,
    CLASSIFICATION_IGNORED,
    CLASSIFICATION_UNCLASSIFIED,
    MATCH_TYPE_EVENT_ID,
    MATCH_TYPE_TITLE_EXACT,
)
from homestay.domains.calendar.errors import ConflictError, NotFoundError, ValidationError
from homestay.domains.calendar.events import (
    CALENDAR_CANDIDATES_IGNORED,
    CALENDAR_HOME_STAYS_CONFIRMED,
    CALENDAR_MAPPING_RULE_APPLIED,
    CALENDAR_MAPPING_RULE_DELETED,
    EVENT_CATALOG,
)
from homestay.domains.calendar.models import CalendarEvent, IgnoreEntry, MappingRule
from homestay.domains.calendar.services import (
    confirm_proposed_stays,
    create_mapping_rule,
    delete_mapping_rule,
    get_home_stay_candidates,
    ignore_candidates_by_title,
    list_mapping_rules,
    relabel_calendar_source,
)
from homestay.domains.household.models import Child, Home
from homestay.extensions import db
from homestay.platform.outbox.models import OutboxMessage


# ==================== Fixtures ====================


@pytest.fixture
def weekend_events(make_event):
    """Two alternating-weekend stays and one soccer practice."""
    return {
        "a1": make_event("a1", "Dad's", datetime(2026, 3, 6), datetime(2026, 3, 8), all_day=True),
        "a2": make_event("a2", "Dad's", datetime(2026, 3, 20), datetime(2026, 3, 22), all_day=True),
        "s1": make_event("s1", "Soccer", datetime(2026, 3, 7, 10), datetime(2026, 3, 7, 11)),
    }


def _title_rule(source, home, title="Dad's", **kwargs):
    return create_mapping_rule(
        child_id=source.child_id,
        calendar_source_id=source.id,
        match_type=MATCH_TYPE_TITLE_EXACT,
        match_value=title,
        home_id=home.id,
        **kwargs,
    )


def _event_rule(source, home, external_id, **kwargs):
    return create_mapping_rule(
        child_id=source.child_id,
        calendar_source_id=source.id,
        match_type=MATCH_TYPE_EVENT_ID,
        match_value=external_id,
        home_id=home.id,
        **kwargs,
    )


def _reload(event):
    return db.session.get(CalendarEvent, event.id)


# ==================== Rule creation ====================


class TestCreateMappingRule:
    def test_title_rule_assigns_every_matching_event(self, source, home, weekend_events):
        result = _title_rule(source, home)

        assert result.events_updated == 2
        for key in ("a1", "a2"):
            event = _reload(weekend_events[key])
            assert event.classification == CLASSIFICATION_HOME_STAY
            assert event.assigned_home_id == home.id
            assert event.mapping_rule_id == result.rule.id
        assert _reload(weekend_events["s1"]).classification == CLASSIFICATION_UNCLASSIFIED

    def test_repeating_the_same_rule_is_a_no_op(self, source, home, weekend_events):
        first = _title_rule(source, home)
        second = _title_rule(source, home)

        assert second.events_updated == 0
        assert second.rule.id == first.rule.id
        assert MappingRule.query.count() == 1

    def test_same_key_replaces_home(self, source, home, other_home, weekend_events):
        first = _title_rule(source, home)
        second = _title_rule(source, other_home)

        assert second.rule.id == first.rule.id
        assert second.events_updated == 2
        assert MappingRule.query.count() == 1
        assert _reload(weekend_events["a1"]).assigned_home_id == other_home.id

    def test_event_id_rule_takes_precedence(self, source, home, other_home, weekend_events):
        _title_rule(source, home)
        result = _event_rule(source, other_home, "a1")

        assert result.events_updated == 1
        assert _reload(weekend_events["a1"]).assigned_home_id == other_home.id
        assert _reload(weekend_events["a2"]).assigned_home_id == home.id

    def test_later_title_rule_keeps_event_id_assignment(self, source, home, other_home, weekend_events):
        id_rule = _event_rule(source, other_home, "a1").rule
        result = _title_rule(source, home)

        assert result.events_updated == 1
        a1 = _reload(weekend_events["a1"])
        assert a1.classification == CLASSIFICATION_HOME_STAY
        assert a1.assigned_home_id == other_home.id
        assert a1.mapping_rule_id == id_rule.id
        assert _reload(weekend_events["a2"]).assigned_home_id == home.id

    def test_one_off_rule_touches_one_event(self, source, home, weekend_events):
        result = _event_rule(source, home, "a2")

        assert result.events_updated == 1
        assert _reload(weekend_events["a1"]).classification == CLASSIFICATION_UNCLASSIFIED
        groups = get_home_stay_candidates(child_id=source.child_id)
        dads = next(g for g in groups if g.title == "Dad's")
        assert [c.external_id for c in dads.candidates] == ["a1"]

    def test_titled_group_leaves_candidates(self, source, home, weekend_events):
        _title_rule(source, home)
        groups = get_home_stay_candidates(child_id=source.child_id)
        assert [g.title for g in groups] == ["Soccer"]

    def test_rule_for_unknown_event_id_is_kept(self, source, home, weekend_events):
        result = _event_rule(source, home, "not-imported-yet")
        assert result.events_updated == 0
        assert MappingRule.query.count() == 1

    def test_enqueues_outbox_message(self, source, home, weekend_events):
        result = _title_rule(source, home)

        message = OutboxMessage.query.filter_by(event_type=CALENDAR_MAPPING_RULE_APPLIED).one()
        assert message.child_id == source.child_id
        assert message.payload["rule_id"] == result.rule.id
        assert message.payload["events_updated"] == 2
        assert set(message.payload) == set(EVENT_CATALOG[CALENDAR_MAPPING_RULE_APPLIED]["payload"])

    def test_list_mapping_rules_filters(self, source, home, weekend_events):
        _title_rule(source, home)
        _event_rule(source, home, "s1")

        assert len(list_mapping_rules(child_id=source.child_id)) == 2
        assert len(list_mapping_rules(calendar_source_id=source.id)) == 2
        assert list_mapping_rules(child_id="someone-else") == []


# ==================== Rule deletion ====================


class TestDeleteMappingRule:
    def test_events_become_candidates_again(self, source, home, weekend_events):
        rule = _title_rule(source, home).rule

        assert delete_mapping_rule(rule.id) == 2
        assert MappingRule.query.count() == 0
        for key in ("a1", "a2"):
            event = _reload(weekend_events[key])
            assert event.classification == CLASSIFICATION_UNCLASSIFIED
            assert event.assigned_home_id is None
            assert event.mapping_rule_id is None
            assert event.confirmed_rule_id is None
        titles = [g.title for g in get_home_stay_candidates(child_id=source.child_id)]
        assert "Dad's" in titles

    def test_remaining_title_rule_takes_over(self, source, home, other_home, weekend_events):
        title_rule = _title_rule(source, home).rule
        id_rule = _event_rule(source, other_home, "a1").rule

        assert delete_mapping_rule(id_rule.id) == 1
        a1 = _reload(weekend_events["a1"])
        assert a1.classification == CLASSIFICATION_HOME_STAY
        assert a1.assigned_home_id == home.id
        assert a1.mapping_rule_id == title_rule.id

    def test_enqueues_outbox_message(self, source, home, weekend_events):
        rule = _title_rule(source, home).rule
        delete_mapping_rule(rule.id)

        message = OutboxMessage.query.filter_by(event_type=CALENDAR_MAPPING_RULE_DELETED).one()
        assert message.payload["rule_id"] == rule.id
        assert message.payload["events_updated"] == 2
        assert set(message.payload) == set(EVENT_CATALOG[CALENDAR_MAPPING_RULE_DELETED]["payload"])

    def test_unknown_rule(self, source):
        with pytest.raises(NotFoundError) as excinfo:
            delete_mapping_rule(9999)
        assert excinfo.value.code == "mapping_rule_not_found"

    def test_rule_of_another_child_is_not_found(self, source, home, weekend_events):
        rule = _title_rule(source, home).rule
        with pytest.raises(NotFoundError):
            delete_mapping_rule(rule.id, child_id="someone-else")
        assert MappingRule.query.count() == 1
        assert _reload(weekend_events["a1"]).classification == CLASSIFICATION_HOME_STAY


# ==================== Future events ====================


class TestFutureEvents:
    """Rules keep applying to events imported after their creation."""

    def test_auto_confirm_labels_new_events(self, source, home, make_event, weekend_events):
        rule = _title_rule(source, home, auto_confirm=True).rule
        later = make_event("a3", "Dad's", datetime(2026, 4, 3), datetime(2026, 4, 5), all_day=True)

        assert relabel_calendar_source(source.id) == 1
        db.session.commit()
        event = _reload(later)
        assert event.classification == CLASSIFICATION_HOME_STAY
        assert event.mapping_rule_id == rule.id

    def test_new_events_are_proposed_until_confirmed(self, source, home, make_event, weekend_events):
        rule = _title_rule(source, home).rule
        later = make_event("a3", "Dad's", datetime(2026, 4, 3), datetime(2026, 4, 5), all_day=True)
        relabel_calendar_source(source.id)
        db.session.commit()

        event = _reload(later)
        assert event.classification == CLASSIFICATION_UNCLASSIFIED
        assert event.mapping_rule_id == rule.id
        assert event.proposed_home_id == home.id
        # Already-decided events stay stays.
        assert _reload(weekend_events["a1"]).classification == CLASSIFICATION_HOME_STAY
        # A proposal is not an open candidate.
        assert [g.title for g in get_home_stay_candidates(child_id=source.child_id)] == ["Soccer"]

        assert confirm_proposed_stays(source.id) == 1
        event = _reload(later)
        assert event.classification == CLASSIFICATION_HOME_STAY
        assert event.assigned_home_id == home.id
        assert event.proposed_home_id is None
        message = OutboxMessage.query.filter_by(event_type=CALENDAR_HOME_STAYS_CONFIRMED).one()
        assert message.payload["confirmed"] == 1

    def test_confirm_selected_events_only(self, source, home, make_event, weekend_events):
        _title_rule(source, home)
        first = make_event("a3", "Dad's", datetime(2026, 4, 3), datetime(2026, 4, 5), all_day=True)
        second = make_event("a4", "Dad's", datetime(2026, 4, 17), datetime(2026, 4, 19), all_day=True)
        relabel_calendar_source(source.id)
        db.session.commit()

        assert confirm_proposed_stays(source.id, event_ids=[second.id]) == 1
        assert _reload(first).classification == CLASSIFICATION_UNCLASSIFIED
        assert _reload(second).classification == CLASSIFICATION_HOME_STAY

        assert confirm_proposed_stays(source.id, event_ids=[]) == 0
        assert OutboxMessage.query.filter_by(event_type=CALENDAR_HOME_STAYS_CONFIRMED).count() == 1

    def test_relabel_without_changes_reports_zero(self, source, home, weekend_events):
        _title_rule(source, home)
        assert relabel_calendar_source(source.id) == 0


# ==================== Ignore ====================


class TestIgnoreCandidates:
    def test_ignores_every_event_with_title(self, source, weekend_events):
        result = ignore_candidates_by_title("Soccer", source.id, source.child_id)

        assert result.ignored == 1
        assert result.entry.title == "Soccer"
        assert _reload(weekend_events["s1"]).classification == CLASSIFICATION_IGNORED
        message = OutboxMessage.query.filter_by(event_type=CALENDAR_CANDIDATES_IGNORED).one()
        assert message.payload["ignored"] == 1

    def test_repeat_ignore_reports_zero(self, source, weekend_events):
        ignore_candidates_by_title("Soccer", source.id, source.child_id)
        again = ignore_candidates_by_title("Soccer", source.id, source.child_id)

        assert again.ignored == 0
        assert IgnoreEntry.query.count() == 1

    def test_cannot_ignore_title_with_rule(self, source, home, weekend_events):
        _title_rule(source, home)
        with pytest.raises(ValidationError) as excinfo:
            ignore_candidates_by_title("Dad's", source.id, source.child_id)
        assert excinfo.value.code == "title_has_rule"
        assert IgnoreEntry.query.count() == 0

    def test_cannot_map_ignored_title(self, source, home, weekend_events):
        ignore_candidates_by_title("Soccer", source.id, source.child_id)

        with pytest.raises(ValidationError) as excinfo:
            _title_rule(source, home, title="Soccer")
        assert excinfo.value.code == "title_ignored"

        with pytest.raises(ValidationError):
            _event_rule(source, home, "s1")
        assert MappingRule.query.count() == 0


# ==================== Validation ====================


class TestValidation:
    def test_unknown_home(self, source, weekend_events):
        with pytest.raises(NotFoundError) as excinfo:
            create_mapping_rule(source.child_id, source.id, MATCH_TYPE_TITLE_EXACT, "Dad's", "missing-home")
        assert excinfo.value.code == "home_not_found"

    def test_inactive_home(self, source, home, weekend_events):
        home.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError) as excinfo:
            _title_rule(source, home)
        assert excinfo.value.code == "home_inactive"

    def test_unknown_source(self, child, home):
        with pytest.raises(NotFoundError) as excinfo:
            create_mapping_rule(child.id, "missing-source", MATCH_TYPE_TITLE_EXACT, "Dad's", home.id)
        assert excinfo.value.code == "calendar_source_not_found"

    def test_inactive_source(self, source, home):
        source.active = False
        db.session.commit()
        with pytest.raises(ValidationError) as excinfo:
            _title_rule(source, home)
        assert excinfo.value.code == "calendar_source_inactive"

    def test_child_must_own_source(self, source, home):
        stranger = Child(name="Leo")
        db.session.add(stranger)
        db.session.commit()
        with pytest.raises(ValidationError) as excinfo:
            create_mapping_rule(stranger.id, source.id, MATCH_TYPE_TITLE_EXACT, "Dad's", home.id)
        assert excinfo.value.code == "child_mismatch"

    @pytest.mark.parametrize(
        "match_type,match_value,code",
        [
            ("starts_with", "Dad", "invalid_match_type"),
            (MATCH_TYPE_TITLE_EXACT, "", "invalid_match_value"),
            (MATCH_TYPE_TITLE_EXACT, "x" * 256, "invalid_match_value"),
            (MATCH_TYPE_EVENT_ID, " a1", "invalid_match_value"),
        ],
    )
    def test_rejects_bad_match(self, source, home, match_type, match_value, code):
        with pytest.raises(ValidationError) as excinfo:
            create_mapping_rule(source.child_id, source.id, match_type, match_value, home.id)
        assert excinfo.value.code == code
        assert MappingRule.query.count() == 0

    def test_rejects_other_event_types(self, source, home):
        with pytest.raises(ValidationError) as excinfo:
            _title_rule(source, home, resulting_event_type="school_day")
        assert excinfo.value.code == "unsupported_event_type"

    def test_failed_call_writes_nothing(self, source, home, weekend_events):
        with pytest.raises(ValidationError):
            _title_rule(source, home, resulting_event_type="school_day")
        assert OutboxMessage.query.count() == 0
        assert _reload(weekend_events["a1"]).classification == CLASSIFICATION_UNCLASSIFIED


# ==================== Transactions ====================


class TestTransactions:
    def test_persistent_conflict_raises(self, app, source, home, weekend_events):
        app.config["MAPPING_CONFLICT_RETRIES"] = 1
        error = IntegrityError("INSERT INTO calendar_mapping_rule", {}, Exception("duplicate key"))
        with patch(
            "homestay.domains.calendar.services.mapping_service._upsert_rule",
            side_effect=error,
        ) as upsert:
            with pytest.raises(ConflictError):
                _title_rule(source, home)
        assert upsert.call_count == 2
        assert MappingRule.query.count() == 0

    def test_conflict_then_success(self, app, source, home, weekend_events):
        from homestay.domains.calendar.services import mapping_service

        real_upsert = mapping_service._upsert_rule
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO calendar_mapping_rule", {}, Exception("duplicate key"))
            return real_upsert(*args, **kwargs)

        with patch.object(mapping_service, "_upsert_rule", side_effect=flaky):
            result = _title_rule(source, home)
        assert result.events_updated == 2
        assert len(calls) == 2

    def test_outbox_failure_rolls_back_rule_and_labels(self, source, home, weekend_events):
        with patch(
            "homestay.domains.calendar.services.mapping_service.enqueue_outbox",
            side_effect=RuntimeError("outbox unavailable"),
        ):
            with pytest.raises(RuntimeError):
                _title_rule(source, home)

        assert MappingRule.query.count() == 0
        for key in ("a1", "a2"):
            event = _reload(weekend_events[key])
            assert event.classification == CLASSIFICATION_UNCLASSIFIED
            assert event.assigned_home_id is None
            assert event.mapping_rule_id is None
            assert event.confirmed_rule_id is None
        assert OutboxMessage.query.count() == 0
