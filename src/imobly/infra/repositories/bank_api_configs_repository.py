"""Bank API configs repository - credentials and cached OAuth tokens.

Uses raw SQL with psycopg2 (no ORM).
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_COLUMNS = """
    id, bank_code, environment, client_id, client_secret, certificate_path,
    key_path, webhook_secret, access_token, token_expires_at, settings, active
"""


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": row[0],
        "bank_code": row[1],
        "environment": row[2],
        "client_id": row[3],
        "client_secret": row[4],
        "certificate_path": row[5],
        "key_path": row[6],
        "webhook_secret": row[7],
        "access_token": row[8],
        "token_expires_at": row[9],
        "settings": row[10] or {},
        "active": row[11],
    }


def find_config(
    cur: PgCursor,
    *,
    bank_code: str,
    environment: str,
) -> dict[str, Any] | None:
    """Find the config for a bank/environment, preferring the active row.

    Args:
        cur: Database cursor.
        bank_code: Bank identifier (e.g. 'bradesco').
        environment: 'sandbox' or 'production'.

    Returns:
        Config dict or None if no row exists for the pair.
    """
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM bank_api_configs
        WHERE bank_code = %s AND environment = %s
        ORDER BY active DESC, id ASC
        LIMIT 1
        """,
        (bank_code, environment),
    )
    row = cur.fetchone()
    return _row_to_dict(row) if row else None


def save_token(
    cur: PgCursor,
    *,
    config_id: int,
    access_token: str,
    token_expires_at: datetime,
) -> None:
    """Persist a freshly issued access token."""
    cur.execute(
        """
        UPDATE bank_api_configs
        SET access_token = %s, token_expires_at = %s, updated_at = now()
        WHERE id = %s
        """,
        (access_token, token_expires_at, config_id),
    )
