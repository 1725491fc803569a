"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus

_DRIVER_PREFIX = "postgresql+psycopg2://"


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN; single-quoted values may contain spaces."""
    tokens: dict[str, str] = {}
    for part in shlex.split(dsn, posix=True):
        key, sep, value = part.partition("=")
        if sep:
            tokens[key] = value
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and goes in the
    query string, since it cannot be expressed as a URL host.
    """
    tokens = _parse_libpq_dsn(dsn)

    user = quote_plus(tokens.get("user", ""))
    password = quote_plus(tokens.get("password", ""))
    credentials = f"{user}:{password}@" if password else (f"{user}@" if user else "")
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}{host}:{port}/{dbname}"


def _get_database_url() -> str:
    """DATABASE_URL as SQLAlchemy expects it.

    psycopg2 accepts both URLs (including the postgres:// scheme hosting
    platforms hand out) and key=value DSNs; SQLAlchemy only accepts URLs
    with a postgresql scheme.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_PREFIX + url[len(scheme):]
    return url
