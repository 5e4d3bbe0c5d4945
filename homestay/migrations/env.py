"""
Alembic environment for Homestay.

Runs under `flask db upgrade` (Flask-Migrate supplies the app context) or
standalone via `alembic -c homestay/migrations/alembic.ini upgrade head`,
in which case an app is built from `homestay_env` / APP_ENV.
"""

from __future__ import annotations

import os
import sys
from contextlib import nullcontext
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from flask import has_app_context

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from homestay import create_app  # noqa: E402
from homestay.extensions import db  # noqa: E402

config = context.config

if config.config_file_name and Path(config.config_file_name).exists():
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _app_context():
    if has_app_context():
        return nullcontext()
    env_name = config.get_main_option("homestay_env") or os.environ.get("APP_ENV")
    return create_app(env_name).app_context()


def run_migrations_offline() -> None:
    context.configure(
        url=db.engine.url.render_as_string(hide_password=False),
        target_metadata=db.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    with db.engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=db.metadata,
            # SQLite cannot ALTER most constraints in place.
            render_as_batch=connection.dialect.name == "sqlite",
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


with _app_context():
    if context.is_offline_mode():
        run_migrations_offline()
    else:
        run_migrations_online()
