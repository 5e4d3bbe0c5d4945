"""Tests for the flask CLI commands."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

pytestmark = pytest.mark.integration

from homestay.domains.calendar.errors import IcsFeedError
from homestay.domains.calendar.models import CalendarEvent, CalendarSource
from homestay.domains.calendar.services.providers import ProviderEventPage
from homestay.domains.household.models import Child, Home
from homestay.extensions import db

PROVIDER_FOR_SOURCE = "homestay.domains.calendar.services.import_service.provider_for_source"


class _OneEventProvider:
    def list_calendars(self):
        return []

    def list_events(self, calendar_id, since_cursor=None):
        return ProviderEventPage(
            events=[{
                "external_id": "a1",
                "title": "Dad's",
                "start": datetime(2026, 3, 6),
                "end": datetime(2026, 3, 8),
                "all_day": True,
            }],
            next_cursor="etag-1",
            full_snapshot=True,
        )


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSyncCalendars:
    def test_sync_all(self, runner, source):
        with patch(PROVIDER_FOR_SOURCE, return_value=_OneEventProvider()):
            result = runner.invoke(args=["sync-calendars"])

        assert result.exit_code == 0
        assert "1 sources" in result.output
        assert "Created: 1" in result.output
        assert CalendarEvent.query.count() == 1

    def test_sync_one_source_failure_exits_non_zero(self, runner, source):
        with patch(PROVIDER_FOR_SOURCE, side_effect=IcsFeedError(source.id, "Calendar link unreachable")):
            result = runner.invoke(args=["sync-calendars", "--source", source.id])

        assert result.exit_code == 1
        assert "Calendar link unreachable" in result.output

    def test_sync_all_reports_failures(self, runner, source):
        with patch(PROVIDER_FOR_SOURCE, side_effect=IcsFeedError(source.id, "Calendar link unreachable")):
            result = runner.invoke(args=["sync-calendars", "--child", source.child_id])

        assert result.exit_code == 0
        assert "Errors: 1" in result.output


class TestHouseholdCommands:
    def test_seed_child_homes_and_feed(self, runner):
        feed = b"BEGIN:VCALENDAR\r\nX-WR-CALNAME:Family\r\nEND:VCALENDAR\r\n"
        resp = MagicMock(status_code=200, content=feed, headers={})
        with patch("homestay.domains.calendar.services.providers.ics.requests.get", return_value=resp):
            result = runner.invoke(args=[
                "seed-household",
                "--child", "Maya",
                "--home", "Dad's flat",
                "--home", "Mum's house",
                "--ics-url", "webcal://calendar.example.com/family.ics",
            ])

        assert result.exit_code == 0, result.output
        child = Child.query.one()
        assert child.name == "Maya"
        assert {h.name for h in Home.query.all()} == {"Dad's flat", "Mum's house"}
        source = CalendarSource.query.one()
        assert source.child_id == child.id
        assert source.name == "Family"
        assert source.provider_calendar_id == "https://calendar.example.com/family.ics"

    def test_feed_requires_child(self, runner):
        result = runner.invoke(args=["seed-household", "--ics-url", "https://example.com/a.ics"])
        assert result.exit_code != 0

    def test_list_and_deactivate_homes(self, runner, home, other_home):
        result = runner.invoke(args=["deactivate-home", other_home.id])
        assert result.exit_code == 0
        assert db.session.get(Home, other_home.id).is_active is False

        listed = runner.invoke(args=["list-homes"]).output
        assert "Dad's flat" in listed
        assert "Mum's house" not in listed
        assert "Mum's house (inactive)" in runner.invoke(args=["list-homes", "--all"]).output

    def test_deactivate_unknown_home(self, runner):
        result = runner.invoke(args=["deactivate-home", "missing"])
        assert result.exit_code != 0
