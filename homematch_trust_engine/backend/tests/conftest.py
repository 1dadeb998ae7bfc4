# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile

# Must run before anything imports app.config / app.db.
_DB_DIR = tempfile.mkdtemp(prefix="homematch-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["NOTIFICATION_DELIVERY"] = "off"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["RETRY_BACKOFF_MIN_SECONDS"] = "0"
os.environ["RETRY_BACKOFF_MAX_SECONDS"] = "0"
os.environ["TRANSCRIPTION_TIMEOUT_SECONDS"] = "5"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

from app.db import init_db  # noqa: E402

init_db()
