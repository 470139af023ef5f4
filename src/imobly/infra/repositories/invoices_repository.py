"""Invoices repository - faturas, their items and the paying tenant.

Uses raw SQL with psycopg2 (no ORM). The boleto core only writes the
settlement/boleto columns of faturas.
"""

from typing import Any

from psycopg2 import sql
from psycopg2.extensions import cursor as PgCursor

from imobly.infra.db import for_update

# Columns the boleto core is allowed to write
UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "valor_pago",
        "pago_em",
        "metodo_pagamento",
        "nosso_numero",
        "boleto_url",
    }
)


def get_invoice(cur: PgCursor, invoice_id: int) -> dict[str, Any] | None:
    """Get a fatura with its contract code and tenant id.

    Args:
        cur: Database cursor.
        invoice_id: faturas.id.

    Returns:
        Dict with the fatura columns plus codigo_contrato and locatario_id,
        or None if not found.
    """
    cur.execute(
        """
        SELECT f.id, f.contrato_id, f.status, f.valor_total, f.vencimento,
               f.competencia, f.valor_pago, f.pago_em, f.metodo_pagamento,
               f.nosso_numero, f.boleto_url, f.observacoes,
               c.codigo_contrato, c.locatario_id
        FROM faturas f
        LEFT JOIN contratos c ON c.id = f.contrato_id
        WHERE f.id = %s
        """,
        (invoice_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "id": row[0],
        "contrato_id": row[1],
        "status": row[2],
        "valor_total": row[3],
        "vencimento": row[4],
        "competencia": row[5],
        "valor_pago": row[6],
        "pago_em": row[7],
        "metodo_pagamento": row[8],
        "nosso_numero": row[9],
        "boleto_url": row[10],
        "observacoes": row[11],
        "codigo_contrato": row[12],
        "locatario_id": row[13],
    }


def get_payer(cur: PgCursor, pessoa_id: int) -> dict[str, Any] | None:
    """Get the payer (pessoas row) fields printed on the boleto."""
    cur.execute(
        """
        SELECT nome_razao_social, cpf_cnpj, email, telefone, rua, numero,
               complemento, bairro, cidade, estado, cep
        FROM pessoas
        WHERE id = %s
        """,
        (pessoa_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "nome": row[0],
        "cpf_cnpj": row[1],
        "email": row[2],
        "telefone": row[3],
        "rua": row[4],
        "numero": row[5],
        "complemento": row[6],
        "bairro": row[7],
        "cidade": row[8],
        "estado": row[9],
        "cep": row[10],
    }


def list_items(cur: PgCursor, invoice_id: int) -> list[dict[str, Any]]:
    """List fatura_lancamentos for an invoice, in insertion order."""
    cur.execute(
        """
        SELECT categoria, descricao, valor_unitario, valor_total
        FROM fatura_lancamentos
        WHERE fatura_id = %s
        ORDER BY id
        """,
        (invoice_id,),
    )
    return [
        {
            "categoria": row[0],
            "descricao": row[1],
            "valor_unitario": row[2],
            "valor_total": row[3],
        }
        for row in cur.fetchall()
    ]


def update_invoice(cur: PgCursor, invoice_id: int, fields: dict[str, Any]) -> None:
    """Update settlement/boleto columns of a fatura.

    Args:
        cur: Database cursor.
        invoice_id: faturas.id.
        fields: Column -> value; keys must be in UPDATABLE_COLUMNS.

    Raises:
        ValueError: If a column outside UPDATABLE_COLUMNS is given.
    """
    if not fields:
        return
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update fatura columns: {sorted(unknown)}")

    columns = sorted(fields)
    assignments = sql.SQL(", ").join(
        sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
    )
    query = sql.SQL("UPDATE faturas SET {}, updated_at = now() WHERE id = %s").format(assignments)
    cur.execute(query, [fields[column] for column in columns] + [invoice_id])


def lock_invoice(cur: PgCursor, invoice_id: int) -> bool:
    """Lock a fatura row until the transaction ends. False if it does not exist."""
    return for_update(cur, "SELECT id FROM faturas WHERE id = %s", (invoice_id,)) is not None
