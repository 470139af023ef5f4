"""DATABASE_URL -> SQLAlchemy URL for Alembic.

Kept apart from env.py so it can be tested without an alembic context.
Accepts URLs (postgres://, postgresql://) and libpq key=value DSNs, and
fills in DB_PASSWORD when the DSN carries no password.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlencode, urlparse, urlunparse

DRIVER_SCHEME = "postgresql+psycopg2"

_DSN_TOKEN = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S+)")
_ESCAPED = re.compile(r"\\(.)")
# Connection keywords that become URL components instead of query params
_URL_KEYS = {"user", "password", "dbname", "host", "port"}


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse "key=value key='quoted \\' value'" into a dict."""
    tokens: dict[str, str] = {}
    for key, raw in _DSN_TOKEN.findall(dsn):
        if raw.startswith("'") and raw.endswith("'") and len(raw) >= 2:
            raw = _ESCAPED.sub(r"\1", raw[1:-1])
        tokens[key] = raw
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" (Cloud SQL unix socket) goes to the query
    string: postgresql+psycopg2://USER:PASS@/DB?host=/cloudsql/...
    Other keywords (sslmode, ...) are kept as query parameters.
    """
    tokens = _parse_libpq_dsn(dsn)
    if not tokens.get("password") and os.environ.get("DB_PASSWORD"):
        tokens["password"] = os.environ["DB_PASSWORD"]

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(tokens.get('password', ''))}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    query = {k: v for k, v in tokens.items() if k not in _URL_KEYS}

    if host.startswith("/"):
        query = {"host": host, **query}
        return f"{DRIVER_SCHEME}://{credentials}@/{dbname}?{urlencode(query)}"

    url = f"{DRIVER_SCHEME}://{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"
    return f"{url}?{urlencode(query)}" if query else url


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)

    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        url = f"{DRIVER_SCHEME}://{rest}"
    if os.environ.get("DB_PASSWORD"):
        url = _with_password(url, os.environ["DB_PASSWORD"])
    return url
