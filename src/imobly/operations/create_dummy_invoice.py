"""imobly-create-dummy-invoice: sandbox invoice (contract, tenant, items) plus optional boleto.

Previous dummy invoices (observacoes = DUMMY_MARKER) are removed first.
"""

import argparse
import secrets
import string
import sys
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from imobly.bradesco.errors import BradescoError, BradescoRejectionError
from imobly.bradesco.factory import build_gateway
from imobly.domain.boletos import BoletoIssueError
from imobly.domain.invoices import InvoiceStatus
from imobly.infra.db import txn
from imobly.infra.time import today
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)

DUMMY_MARKER = "BRADESCO_SANDBOX_DUMMY"
DUE_DAY = 28

LANDLORD = {
    "cpf_cnpj": "77256195000120",
    "nome_razao_social": "INOVA FOODS LOCADOR TESTE",
    "email": "locador@inova.test",
    "telefone": "1133334444",
    "rua": "AV BRIGADEIRO FARIA LIMA",
    "numero": "1000",
    "complemento": "CONJ 1001",
    "bairro": "ITAIM BIBI",
    "cidade": "SAO PAULO",
    "estado": "SP",
    "cep": "04547000",
}

TENANT = {
    "cpf_cnpj": "12345678909",
    "nome_razao_social": "JOSE LOCATARIO TESTE",
    "email": "locatario@exemplo.test",
    "telefone": "11988887777",
    "rua": "AV PAULISTA",
    "numero": "1578",
    "complemento": "AP 42",
    "bairro": "BELA VISTA",
    "cidade": "SAO PAULO",
    "estado": "SP",
    "cep": "01310930",
}

ITEMS = (
    ("Aluguel", "Aluguel mensal", Decimal("2749.89")),
    ("Condominio", "Repasse condominio", Decimal("861.57")),
    ("IPTU", "Repasse IPTU", Decimal("1908.51")),
)


def _delete_previous_dummies(cur: PgCursor) -> None:
    cur.execute("SELECT id FROM faturas WHERE observacoes = %s", (DUMMY_MARKER,))
    ids = [row[0] for row in cur.fetchall()]
    if not ids:
        return
    for table in ("fatura_boletos", "fatura_lancamentos", "financial_transactions"):
        cur.execute(f"DELETE FROM {table} WHERE fatura_id = ANY(%s)", (ids,))
    cur.execute("DELETE FROM faturas WHERE id = ANY(%s)", (ids,))


def _upsert_person(cur: PgCursor, person: dict) -> int:
    columns = list(person)
    cur.execute(
        f"""
        INSERT INTO pessoas ({", ".join(columns)})
        VALUES ({", ".join(["%s"] * len(columns))})
        ON CONFLICT (cpf_cnpj) DO UPDATE SET updated_at = now()
        RETURNING id
        """,
        [person[c] for c in columns],
    )
    return cur.fetchone()[0]


def create_dummy_invoice(cur: PgCursor) -> tuple[int, str, Decimal]:
    """Create landlord, tenant, contract, invoice and items.

    Returns:
        (invoice id, contract code, invoice total)
    """
    _delete_previous_dummies(cur)
    landlord_id = _upsert_person(cur, LANDLORD)
    tenant_id = _upsert_person(cur, TENANT)

    suffix = "".join(secrets.choice(string.ascii_uppercase) for _ in range(5))
    contract_code = f"BRADESCO-SANDBOX-{suffix}"
    cur.execute(
        """
        INSERT INTO contratos (codigo_contrato, locador_id, locatario_id, dia_vencimento, valor_aluguel)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (contract_code, landlord_id, tenant_id, DUE_DAY, Decimal("5519.97")),
    )
    contract_id = cur.fetchone()[0]

    current = today()
    total = sum((value for _, _, value in ITEMS), Decimal("0"))
    cur.execute(
        """
        INSERT INTO faturas (contrato_id, competencia, vencimento, status, valor_total, observacoes)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            contract_id,
            current.replace(day=1),
            current.replace(day=DUE_DAY),
            InvoiceStatus.OPEN.value,
            total,
            DUMMY_MARKER,
        ),
    )
    invoice_id = cur.fetchone()[0]

    for categoria, descricao, value in ITEMS:
        cur.execute(
            """
            INSERT INTO fatura_lancamentos
                (fatura_id, categoria, descricao, quantidade, valor_unitario, valor_total)
            VALUES (%s, %s, %s, 1, %s, %s)
            """,
            (invoice_id, categoria, descricao, value, value),
        )
    return invoice_id, contract_code, total


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="imobly-create-dummy-invoice",
        description="Create a test invoice and, unless --no-issue, issue its boleto.",
    )
    parser.add_argument("--no-issue", action="store_true", help="do not issue the boleto")
    args = parser.parse_args(argv)

    with txn() as cur:
        invoice_id, contract_code, total = create_dummy_invoice(cur)
    sys.stdout.write(f"Dummy invoice created: #{invoice_id} (contract {contract_code})\n")
    sys.stdout.write(f"Invoice total: R$ {total:.2f}\n")

    if args.no_issue:
        sys.stdout.write("Boleto NOT issued (--no-issue).\n")
        return 0

    gateway = build_gateway()
    try:
        with gateway.unit_of_work() as cur:
            boleto = gateway.issue(cur, invoice_id)
    except (BradescoError, BoletoIssueError) as e:
        logger.error(
            "dummy invoice boleto issue failed",
            extra={"extra_fields": safe_log_context(fatura_id=invoice_id, error_type=type(e).__name__)},
        )
        sys.stderr.write(f"Could not issue the boleto: {e}\n")
        if isinstance(e, BradescoRejectionError) and e.body is not None:
            sys.stderr.write(f"Details: {e.body}\n")
        return 1

    sys.stdout.write("Boleto issued:\n")
    sys.stdout.write(f" - Nosso numero: {boleto.nosso_numero}\n")
    sys.stdout.write(f" - Linha digitavel: {boleto.linha_digitavel}\n")
    sys.stdout.write(f" - PDF URL: {boleto.pdf_url}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
