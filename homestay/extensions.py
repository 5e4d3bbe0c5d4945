"""Flask extension singletons, bound to an app in `init_extensions`."""

from pathlib import Path

from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Services keep using rows after commit (import counts, outbox ids).
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate(directory=str(MIGRATIONS_DIR))
jwt = JWTManager()
# RATELIMIT_ENABLED / RATELIMIT_DEFAULT / RATELIMIT_STORAGE_URI come from app config.
limiter = Limiter(key_func=get_remote_address)


def init_extensions(app) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)
