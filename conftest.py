"""Environment defaults for the test session.

api.config and api.db read the environment at import time, so these must
be in place before any api module is imported.
"""
import os
import tempfile
from pathlib import Path

_tmp = Path(tempfile.mkdtemp(prefix="stroymanager-tests-"))

os.environ.setdefault("DB_PATH", str(_tmp / "test.db"))
os.environ.setdefault("LOGS_DIR", str(_tmp / "logs"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("INTERNAL_ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_ID", "")
os.environ.setdefault("TELEGRAM_WEBHOOK_SECRET", "")
