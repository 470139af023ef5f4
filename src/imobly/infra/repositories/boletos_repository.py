"""Boletos repository - persistence for fatura_boletos.

Uses raw SQL with psycopg2 (no ORM). The payload, response_payload and
webhook_payload columns are sanitized here on every write, so no caller
can store an unmasked bank document.
"""

import json
from datetime import date
from typing import Any, Sequence

from psycopg2 import sql
from psycopg2.extensions import cursor as PgCursor

from imobly.bradesco.sanitizer import sanitize
from imobly.infra.db import for_update

JSON_COLUMNS = ("payload", "response_payload", "webhook_payload")

COLUMNS = (
    "id",
    "fatura_id",
    "bank_code",
    "status",
    "external_id",
    "nosso_numero",
    "document_number",
    "linha_digitavel",
    "codigo_barras",
    "valor",
    "vencimento",
    "valor_pago",
    "registrado_em",
    "liquidado_em",
    "pdf_url",
    "last_synced_at",
    "payload",
    "response_payload",
    "webhook_payload",
)

WRITABLE_COLUMNS = frozenset(COLUMNS) - {"id"}

_SELECT = sql.SQL("SELECT {} FROM fatura_boletos").format(
    sql.SQL(", ").join(sql.Identifier(c) for c in COLUMNS)
)


def _row_to_dict(row: Sequence[Any]) -> dict[str, Any]:
    return dict(zip(COLUMNS, row))


def _encode(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS and value is not None:
        return json.dumps(sanitize(value), default=str)
    return value


def _check_columns(fields: dict[str, Any]) -> list[str]:
    unknown = set(fields) - WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot write fatura_boletos columns: {sorted(unknown)}")
    return sorted(fields)


def get_boleto(cur: PgCursor, boleto_id: int) -> dict[str, Any] | None:
    """Get a boleto by id."""
    cur.execute(_SELECT + sql.SQL(" WHERE id = %s"), (boleto_id,))
    row = cur.fetchone()
    return _row_to_dict(row) if row else None


def lock_boleto(cur: PgCursor, boleto_id: int) -> dict[str, Any] | None:
    """SELECT ... FOR UPDATE a boleto row for the rest of the transaction."""
    row = for_update(cur, _SELECT.as_string(cur) + " WHERE id = %s", (boleto_id,))
    return _row_to_dict(row) if row else None


def find_latest_for_invoice(
    cur: PgCursor,
    invoice_id: int,
    statuses: Sequence[str],
    bank_code: str,
) -> dict[str, Any] | None:
    """Most recent boleto of an invoice whose status is in statuses."""
    cur.execute(
        _SELECT
        + sql.SQL(
            " WHERE fatura_id = %s AND bank_code = %s AND status = ANY(%s::boleto_status[])"
            " ORDER BY id DESC LIMIT 1"
        ),
        (invoice_id, bank_code, list(statuses)),
    )
    row = cur.fetchone()
    return _row_to_dict(row) if row else None


def find_by_reference(
    cur: PgCursor,
    *,
    bank_code: str,
    external_id: str | None,
    nosso_numero: str | None,
) -> dict[str, Any] | None:
    """Resolve a boleto from bank identifiers.

    external_id is tried first, then nosso_numero; when several rows match
    the newest (highest id) wins.
    """
    for column, value in (("external_id", external_id), ("nosso_numero", nosso_numero)):
        if not value:
            continue
        cur.execute(
            _SELECT
            + sql.SQL(" WHERE bank_code = %s AND {} = %s ORDER BY id DESC LIMIT 1").format(
                sql.Identifier(column)
            ),
            (bank_code, value),
        )
        row = cur.fetchone()
        if row:
            return _row_to_dict(row)
    return None


def insert_boleto(cur: PgCursor, fields: dict[str, Any]) -> dict[str, Any]:
    """Insert a boleto and return the stored row."""
    columns = _check_columns(fields)
    query = sql.SQL("INSERT INTO fatura_boletos ({}) VALUES ({}) RETURNING {}").format(
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        sql.SQL(", ").join(sql.Identifier(c) for c in COLUMNS),
    )
    cur.execute(query, [_encode(c, fields[c]) for c in columns])
    return _row_to_dict(cur.fetchone())


def update_boleto(cur: PgCursor, boleto_id: int, fields: dict[str, Any]) -> dict[str, Any]:
    """Update columns of a boleto and return the stored row."""
    columns = _check_columns(fields)
    query = sql.SQL("UPDATE fatura_boletos SET {}, updated_at = now() WHERE id = %s RETURNING {}").format(
        sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns),
        sql.SQL(", ").join(sql.Identifier(c) for c in COLUMNS),
    )
    cur.execute(query, [_encode(c, fields[c]) for c in columns] + [boleto_id])
    return _row_to_dict(cur.fetchone())


def list_open_page(
    cur: PgCursor,
    *,
    bank_code: str,
    statuses: Sequence[str],
    limit: int,
    after: tuple[date, int] | None = None,
) -> list[dict[str, Any]]:
    """Page of boletos in statuses, newest due date first.

    Keyset pagination on (vencimento, id) descending; pass the last row's
    (vencimento, id) as after to fetch the next page.
    """
    where = sql.SQL("bank_code = %s AND status = ANY(%s::boleto_status[])")
    params: list[Any] = [bank_code, list(statuses)]
    if after is not None:
        where = where + sql.SQL(" AND (vencimento, id) < (%s, %s)")
        params.extend(after)
    params.append(limit)

    cur.execute(
        _SELECT
        + sql.SQL(" WHERE ")
        + where
        + sql.SQL(" ORDER BY vencimento DESC, id DESC LIMIT %s"),
        params,
    )
    return [_row_to_dict(row) for row in cur.fetchall()]


def count_with_payloads(cur: PgCursor, *, bank_code: str) -> int:
    """Count boletos holding at least one stored bank document."""
    cur.execute(
        """
        SELECT count(*) FROM fatura_boletos
        WHERE bank_code = %s
          AND (payload IS NOT NULL OR response_payload IS NOT NULL
               OR webhook_payload IS NOT NULL)
        """,
        (bank_code,),
    )
    return cur.fetchone()[0]


def list_with_payloads_page(
    cur: PgCursor,
    *,
    bank_code: str,
    limit: int,
    after_id: int = 0,
) -> list[dict[str, Any]]:
    """Page (by ascending id) of boletos with stored bank documents."""
    cur.execute(
        """
        SELECT id, payload, response_payload, webhook_payload
        FROM fatura_boletos
        WHERE bank_code = %s AND id > %s
          AND (payload IS NOT NULL OR response_payload IS NOT NULL
               OR webhook_payload IS NOT NULL)
        ORDER BY id
        LIMIT %s
        """,
        (bank_code, after_id, limit),
    )
    return [
        {
            "id": row[0],
            "payload": row[1],
            "response_payload": row[2],
            "webhook_payload": row[3],
        }
        for row in cur.fetchall()
    ]


def update_payloads(cur: PgCursor, boleto_id: int, payloads: dict[str, Any]) -> None:
    """Rewrite stored bank documents (sanitized on the way in)."""
    columns = [c for c in JSON_COLUMNS if c in payloads]
    if not columns:
        return
    query = sql.SQL("UPDATE fatura_boletos SET {}, updated_at = now() WHERE id = %s").format(
        sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns)
    )
    cur.execute(query, [_encode(c, payloads[c]) for c in columns] + [boleto_id])


def rename_cancelled_duplicates(
    cur: PgCursor,
    *,
    bank_code: str,
    external_id: str,
    invoice_id: int | None = None,
) -> int:
    """Suffix external_id of cancelled rows reusing it with "#<id>".

    The sandbox hands out the same identifiers again, so a new boleto
    would otherwise resolve to an old cancelled one.

    Returns:
        Number of rows renamed.
    """
    query = """
        UPDATE fatura_boletos
        SET external_id = external_id || '#' || id::text, updated_at = now()
        WHERE bank_code = %s AND external_id = %s AND status = 'cancelled'
    """
    params: list[Any] = [bank_code, external_id]
    if invoice_id is not None:
        query += " AND fatura_id = %s"
        params.append(invoice_id)
    cur.execute(query, params)
    return cur.rowcount
