import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

ENV_PREFIX = "NOTES_"

SEVEN_DAYS = 7 * 24 * 60 * 60


def _as_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _as_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Settings:
    """
    Application settings, loaded from NOTES_* environment variables.
    A .env file in the working directory is honoured.
    """
    database_url: str = "sqlite:///./data.db"
    # Empty means a random key is generated at startup and kept in memory only.
    session_secret_keys: List[str] = field(default_factory=list)
    session_cookie_name: str = "notes_session"
    session_max_age: int = SEVEN_DAYS
    session_secure_cookie: bool = False
    session_reap_interval: int = 3600
    password_rounds: int = 12
    db_timeout: float = 15.0
    debug: bool = False
    cors_origins: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment (loading .env first when reading os.environ)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        def get(name: str) -> Optional[str]:
            return environ.get(ENV_PREFIX + name)

        kwargs = {}
        if get("DATABASE_URL"):
            kwargs["database_url"] = get("DATABASE_URL")
        if get("SESSION_SECRET_KEYS") is not None:
            kwargs["session_secret_keys"] = _as_list(get("SESSION_SECRET_KEYS"))
        if get("SESSION_COOKIE_NAME"):
            kwargs["session_cookie_name"] = get("SESSION_COOKIE_NAME")
        if get("SESSION_MAX_AGE") is not None:
            kwargs["session_max_age"] = int(get("SESSION_MAX_AGE"))
        if get("SESSION_SECURE_COOKIE") is not None:
            kwargs["session_secure_cookie"] = _as_bool(get("SESSION_SECURE_COOKIE"))
        if get("SESSION_REAP_INTERVAL") is not None:
            kwargs["session_reap_interval"] = int(get("SESSION_REAP_INTERVAL"))
        if get("PASSWORD_ROUNDS") is not None:
            kwargs["password_rounds"] = int(get("PASSWORD_ROUNDS"))
        if get("DB_TIMEOUT") is not None:
            kwargs["db_timeout"] = float(get("DB_TIMEOUT"))
        if get("DEBUG") is not None:
            kwargs["debug"] = _as_bool(get("DEBUG"))
        if get("CORS_ORIGINS") is not None:
            kwargs["cors_origins"] = _as_list(get("CORS_ORIGINS"))
        return cls(**kwargs)
