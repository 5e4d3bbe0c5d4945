"""WSGI entrypoint: `gunicorn homestay.wsgi:app`, or run this file for a dev server."""

from __future__ import annotations

import os
import sys
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent
# Running the file directly puts homestay/ on sys.path, where homestay/platform
# would shadow the stdlib module.
sys.path[:] = [p for p in sys.path if Path(p or ".").resolve() != PACKAGE_DIR]
if str(PACKAGE_DIR.parent) not in sys.path:
    sys.path.insert(0, str(PACKAGE_DIR.parent))

from homestay import create_app  # noqa: E402

app = create_app(os.environ.get("APP_ENV"))

if __name__ == "__main__":
    app.run(
        host=os.environ.get("FLASK_RUN_HOST", "127.0.0.1"),
        port=int(os.environ.get("FLASK_RUN_PORT", "5001")),
    )
