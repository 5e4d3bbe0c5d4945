from datetime import datetime

import pytest
from flask_jwt_extended import create_access_token

from homestay import create_app
from homestay.domains.calendar.constants import PROVIDER_ICS
from homestay.domains.calendar.models import CalendarEvent, CalendarSource
from homestay.domains.household.models import Child, Home
from homestay.extensions import db


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")


@pytest.fixture()
def app(tmp_path):
    """
    Create a per-test app backed by its own sqlite file.

    The schema is built from model metadata and dropped afterwards so no state
    leaks between tests.
    """
    app = create_app(
        "testing",
        {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'homestay-test.db'}"},
    )
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    try:
        yield app
    finally:
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def child(app):
    child = Child(name="Maya")
    db.session.add(child)
    db.session.commit()
    return child


@pytest.fixture()
def home(app):
    home = Home(name="Dad's flat", address="12 Harbour Road")
    db.session.add(home)
    db.session.commit()
    return home


@pytest.fixture()
def other_home(app):
    home = Home(name="Mum's house")
    db.session.add(home)
    db.session.commit()
    return home


@pytest.fixture()
def source(child):
    source = CalendarSource(
        child_id=child.id,
        provider=PROVIDER_ICS,
        provider_calendar_id="https://calendar.example.com/family.ics",
        name="Family",
    )
    db.session.add(source)
    db.session.commit()
    return source


@pytest.fixture()
def make_event(source):
    """Factory persisting a calendar event in the default source."""

    def _make(external_id, title, start, end=None, **fields):
        event = CalendarEvent(
            external_id=external_id,
            calendar_source_id=fields.pop("calendar_source_id", source.id),
            child_id=fields.pop("child_id", source.child_id),
            title=title,
            start_time=start,
            end_time=end or datetime(start.year, start.month, start.day, 23, 59),
            **fields,
        )
        db.session.add(event)
        db.session.commit()
        return event

    return _make


@pytest.fixture()
def auth_headers(app):
    def _headers(roles=("calendar:write",), children=None):
        claims = {"roles": list(roles)}
        if children is not None:
            claims["children"] = list(children)
        token = create_access_token(identity="parent-1", additional_claims=claims)
        return {"Authorization": f"Bearer {token}"}

    return _headers
