import pytest

from homestay import PROJECT_ROOT, create_app
from homestay.config import engine_options_for

pytestmark = pytest.mark.unit


class TestEngineOptions:
    def test_sqlite_uses_busy_timeout(self):
        assert engine_options_for("sqlite:///x.db") == {"pool_pre_ping": True, "connect_args": {"timeout": 30}}

    def test_postgres_uses_connect_timeout(self):
        opts = engine_options_for("postgresql://u:p@db/homestay")
        assert opts["connect_args"] == {"connect_timeout": 10}

    def test_other_backends_only_ping(self):
        assert engine_options_for("mysql://u:p@db/homestay") == {"pool_pre_ping": True}


class TestCreateApp:
    def test_relative_sqlite_path_is_anchored_at_project_root(self):
        app = create_app("testing", {"SQLALCHEMY_DATABASE_URI": "sqlite:///instance/factory-test.db"})
        expected = PROJECT_ROOT / "instance" / "factory-test.db"
        assert app.config["SQLALCHEMY_DATABASE_URI"] == f"sqlite:///{expected}"

    def test_unknown_env_falls_back_to_development(self, tmp_path):
        app = create_app("staging", {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'dev.db'}"})
        assert app.debug is True

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/calendar/nope")
        assert resp.status_code == 404
        assert resp.get_json()["ok"] is False

    def test_cli_commands_registered(self, app):
        for name in ("sync-calendars", "dispatch-outbox", "seed-household", "list-homes", "deactivate-home"):
            assert name in app.cli.commands
