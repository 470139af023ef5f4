"""Financial transactions linked to an invoice (optional participant).

Uses raw SQL with psycopg2 (no ORM).
"""

import json
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def update_from_boleto(
    cur: PgCursor,
    *,
    invoice_id: int,
    status: str,
    boleto_sync: dict[str, Any],
    data_ocorrencia: date | None = None,
) -> int:
    """Set status on every transaction of an invoice and record the sync.

    meta.boleto_sync is merged into the existing meta; other meta keys
    are preserved. data_ocorrencia is only overwritten when given.

    Args:
        cur: Database cursor.
        invoice_id: faturas.id.
        status: New transaction status ('conciliado' / 'cancelado').
        boleto_sync: fatura_boleto_id, status and last_synced_at.
        data_ocorrencia: Settlement / cancellation date.

    Returns:
        Number of transactions updated.
    """
    cur.execute(
        """
        UPDATE financial_transactions
        SET status = %s,
            data_ocorrencia = COALESCE(%s::date, data_ocorrencia),
            meta = COALESCE(meta, '{}'::jsonb) || %s::jsonb,
            updated_at = now()
        WHERE fatura_id = %s
        """,
        (status, data_ocorrencia, json.dumps({"boleto_sync": boleto_sync}, default=str), invoice_id),
    )
    return cur.rowcount
