"""Environment helpers for resolving connection settings.

These utilities centralize how the service derives its database connection so
we can support both Docker-based development and native execution on the host
machine. Explicit variables win; otherwise the defaults adapt when
``ENVIRONMENT=native``.
"""
from __future__ import annotations

import os

from sqlalchemy.engine import URL

DEFAULT_DB_HOST_DOCKER = "postgres"
DEFAULT_DB_HOST_NATIVE = "localhost"
DEFAULT_DB_DRIVER = "postgresql+psycopg2"


def get_environment(default: str = "dev") -> str:
    """Return the active environment name.

    The value is read from the ``ENVIRONMENT`` variable if present and
    normalized to lowercase. When the variable is missing ``default`` is
    returned.
    """

    return os.getenv("ENVIRONMENT", default).strip().lower()


def is_native_environment(env: str | None = None) -> bool:
    """Return ``True`` when the environment corresponds to ``native``."""

    env_name = env if env is not None else get_environment()
    return env_name.lower() == "native"


def default_database_host() -> str:
    """Return the database host matching the active environment."""

    if is_native_environment():
        return DEFAULT_DB_HOST_NATIVE
    return DEFAULT_DB_HOST_DOCKER


def build_database_url(
    *,
    host: str,
    port: int,
    user: str,
    password: str,
    name: str,
    driver: str = DEFAULT_DB_DRIVER,
) -> str:
    """Compose a SQLAlchemy URL from discrete connection parameters.

    Credentials are quoted by SQLAlchemy so passwords containing ``@`` or
    ``/`` survive the round trip.
    """

    url = URL.create(
        drivername=driver,
        username=user,
        password=password,
        host=host,
        port=port,
        database=name,
    )
    return url.render_as_string(hide_password=False)


__all__ = [
    "DEFAULT_DB_DRIVER",
    "DEFAULT_DB_HOST_DOCKER",
    "DEFAULT_DB_HOST_NATIVE",
    "build_database_url",
    "default_database_host",
    "get_environment",
    "is_native_environment",
]
