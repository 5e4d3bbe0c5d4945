"""Homestay: maps a child's shared calendar events to the home they stay at."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from flask import Flask
from sqlalchemy.engine.url import make_url
from werkzeug.exceptions import HTTPException

from homestay.config import config_by_name, engine_options_for
from homestay.extensions import init_extensions

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def create_app(
    config_name: Optional[str] = None,
    config_overrides: Optional[Mapping[str, Any]] = None,
) -> Flask:
    env_name = (config_name or os.environ.get("APP_ENV") or "development").lower()
    app = Flask(__name__, instance_path=str(PROJECT_ROOT / "instance"))
    app.config.from_object(config_by_name.get(env_name, config_by_name["development"]))
    if config_overrides:
        app.config.update(config_overrides)

    _configure_database(app)
    init_extensions(app)
    _register_models()
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)

    @app.get("/health")
    def health():
        return {"ok": True}, 200

    return app


def _configure_database(app: Flask) -> None:
    """Anchor relative sqlite paths at the project root and pick engine options."""
    url = make_url(app.config["SQLALCHEMY_DATABASE_URI"])
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        db_path = Path(url.database)
        if not db_path.is_absolute():
            db_path = PROJECT_ROOT / db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = url.set(database=str(db_path))
        app.config["SQLALCHEMY_DATABASE_URI"] = url.render_as_string(hide_password=False)
    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(app.config["SQLALCHEMY_DATABASE_URI"]),
    )


def _register_models() -> None:
    # Every table must be on db.metadata before create_all / autogenerate.
    from homestay.domains.calendar import models as calendar_models  # noqa: F401
    from homestay.domains.household import models as household_models  # noqa: F401
    from homestay.platform.outbox import models as outbox_models  # noqa: F401


def _register_blueprints(app: Flask) -> None:
    from homestay.domains.calendar.controllers import calendar_api_bp

    app.register_blueprint(calendar_api_bp, url_prefix="/api/calendar")


def _register_cli(app: Flask) -> None:
    from homestay.scripts import seed_household, sync_calendars

    sync_calendars.register_commands(app)
    seed_household.register_commands(app)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return {"ok": False, "error": exc.description}, exc.code

    @app.errorhandler(Exception)
    def _unexpected_error(exc: Exception):
        app.logger.exception(f"Unhandled error: {exc}")
        # Debug and test runs show the message; production hides it.
        message = str(exc) if (app.debug or app.testing) else "unexpected_error"
        return {"ok": False, "error": message}, 500
