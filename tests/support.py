from __future__ import annotations

import os
import sys
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, Dict, Optional
from unittest import TestCase
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fringe_admin import create_app  # noqa: E402

# Integrations that would otherwise be picked up from a developer shell.
CLEARED_ENV = (
    "SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_PROJECT_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_ANON_KEY",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_JWT_SECRET",
    "SUPABASE_DB_POOL_URL",
    "REDIS_URL",
    "UPSTASH_REDIS_URL",
    "SMTP_HOST",
    "SMTP_FROM_EMAIL",
    "VERCEL",
    "VERCEL_ENV",
    "FLASK_ENV",
    "ALLOWED_ORIGINS",
    "RATE_LIMIT_PER_MINUTE",
    "SESSION_COOKIE_SECURE",
    "DATABASE_SSLMODE",
)


class IsolatedEnvironmentTestCase(TestCase):
    """Runs every test against a fresh local data directory."""

    extra_env: Dict[str, str] = {}

    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        environ = {
            "STORAGE_DATA_DIR": self.tmpdir.name,
            "LOCAL_DATABASE_URI": f"sqlite:///{self.tmpdir.name}/sessions.db",
            "FLASK_SECRET_KEY": "test-secret",
            "SITE_URL": "https://fringe.test",
            **self.extra_env,
        }
        self.env_patch = patch.dict(os.environ, environ, clear=False)
        self.env_patch.start()
        self.addCleanup(self.env_patch.stop)
        for name in CLEARED_ENV:
            if name not in self.extra_env:
                os.environ.pop(name, None)


class AppTestCase(IsolatedEnvironmentTestCase):
    """Flask test client plus helpers for signing in and seeding tables."""

    def setUp(self) -> None:
        super().setUp()
        self.app = create_app()
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()
        self.db = self.app.database_service

    def login_as(self, role: str = "super_admin", user_id: str = "admin-1", email: str = "admin@fringe.test") -> Dict[str, Any]:
        user = {"id": user_id, "email": email, "role": role}
        with self.client.session_transaction() as sess:
            sess["admin_user"] = user
        return user

    def seed(self, table: str, **values: Any) -> Dict[str, Any]:
        return self.db.insert(table, values)

    def envelope(self, response, status: Optional[int] = None) -> Dict[str, Any]:
        if status is not None:
            self.assertEqual(status, response.status_code, response.get_data(as_text=True))
        return response.get_json()
