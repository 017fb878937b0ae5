"""Settings loaded from environment variables.

Every key is read with the ``TASKBOARD_`` prefix. ``DATABASE_URL`` without the
prefix is honoured as well, since hosting platforms inject it under that name.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

ENV_PREFIX = "TASKBOARD"


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _first_env(*names: str, default: str) -> str:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def normalize_database_url(url: str) -> str:
    # Some providers still hand out the legacy scheme SQLAlchemy dropped.
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./taskboard.db"
    session_secret: str = "change-me"
    session_cookie: str = "taskboard_session"
    identity_header_prefix: str = "X-Forwarded-"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def load_settings(database_url: Optional[str] = None) -> Settings:
    url = database_url or _first_env(
        _k("DATABASE_URL"), "DATABASE_URL", default=Settings.database_url
    )
    return Settings(
        database_url=normalize_database_url(url),
        session_secret=_first_env(_k("SESSION_SECRET"), default=Settings.session_secret),
        session_cookie=_first_env(_k("SESSION_COOKIE"), default=Settings.session_cookie),
        identity_header_prefix=_first_env(
            _k("IDENTITY_HEADER_PREFIX"), default=Settings.identity_header_prefix
        ),
        log_level=_first_env(_k("LOG_LEVEL"), default=Settings.log_level).upper(),
        host=_first_env(_k("HOST"), default=Settings.host),
        port=_env_int(_k("PORT"), Settings.port),
    )
