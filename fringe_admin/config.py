"""Runtime settings for the admin console.

Everything is read from environment variables (a ``.env`` file is honoured).
Integrations that are not configured degrade to local behaviour:

- SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY: hosted database, auth and storage.
  Without them tables live under STORAGE_DATA_DIR.
- SUPABASE_JWT_SECRET: enables ``Authorization: Bearer`` access to the API.
- SMTP_HOST / SMTP_PORT / SMTP_FROM_EMAIL: fallback mail server when no SMTP
  row is active in the database. Without any, mail is only logged.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]


@dataclass
class SmtpConfig:
    """Environment-level SMTP fallback."""
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    from_email: str = ""
    from_name: str = "The Fringe"
    encryption: str = "tls"

    @property
    def is_valid(self) -> bool:
        return bool(self.host and self.from_email)


@dataclass
class Settings:
    """Main application settings."""
    site_url: str
    allowed_origins: List[str]
    rate_limit_per_minute: int
    jwt_secret: str
    smtp: SmtpConfig = field(default_factory=SmtpConfig)

    def log_status(self) -> None:
        logger.info("Allowed origins: %s", ", ".join(self.allowed_origins))
        logger.info("Bearer auth: %s", "enabled" if self.jwt_secret else "disabled")
        logger.info("SMTP fallback: %s", "configured" if self.smtp.is_valid else "not configured")


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return default


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings from environment variables.

    Args:
        env_path: Optional path to a .env file. Defaults to the working directory.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        load_dotenv()

    origins_env = os.getenv("ALLOWED_ORIGINS")
    if origins_env:
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    else:
        origins = list(DEFAULT_ALLOWED_ORIGINS)

    smtp = SmtpConfig(
        host=os.getenv("SMTP_HOST", ""),
        port=_int_from_env("SMTP_PORT", 587),
        username=os.getenv("SMTP_USERNAME", ""),
        password=os.getenv("SMTP_PASSWORD", ""),
        from_email=os.getenv("SMTP_FROM_EMAIL", ""),
        from_name=os.getenv("SMTP_FROM_NAME", "The Fringe"),
        encryption=os.getenv("SMTP_ENCRYPTION", "tls").lower(),
    )

    return Settings(
        site_url=os.getenv("SITE_URL") or os.getenv("NEXT_PUBLIC_SITE_URL") or "http://localhost:3000",
        allowed_origins=origins,
        rate_limit_per_minute=_int_from_env("RATE_LIMIT_PER_MINUTE", 100),
        jwt_secret=os.getenv("SUPABASE_JWT_SECRET", ""),
        smtp=smtp,
    )
