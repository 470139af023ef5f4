"""Shared test helper functions for Imobly boleto tests.

This module contains helpers that can be imported by both conftest.py
and individual test files. These are NOT fixtures - they are regular
functions and classes.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterator
from unittest.mock import MagicMock, patch

from imobly.bradesco.sanitizer import sanitize
from imobly.bradesco.settings import BANK_CODE, BradescoSettings
from imobly.domain.events import BoletoEvent, EventDispatcher
from imobly.infra.repositories.boletos_repository import COLUMNS, JSON_COLUMNS, WRITABLE_COLUMNS

TENANT = {
    "nome": "Jose Locatario Teste",
    "cpf_cnpj": "123.456.789-09",
    "email": "locatario@exemplo.test",
    "telefone": "(11) 98888-7777",
    "rua": "Av. Paulista",
    "numero": "1578",
    "complemento": "AP 42",
    "bairro": "Bela Vista",
    "cidade": "São Paulo",
    "estado": "SP",
    "cep": "01310-930",
}

# Modules that open transactions through imobly.infra.db.txn
TXN_MODULES = (
    "imobly.bradesco.gateway",
    "imobly.jobs.sync_pending",
    "imobly.operations.sanitize_boleto_payloads",
)


def make_settings(**overrides: Any) -> BradescoSettings:
    values: dict[str, Any] = {
        "base_url": "https://openapisandbox.prebanco.com.br",
        "client_id": "client-id",
        "client_secret": "client-secret",
        "environment": "sandbox",
        "id_produto": "09",
        "negociacao": "386100000000041000",
        "cod_especie": "02",
        "cnpj_raiz": "38052160",
        "cnpj_filial": "0057",
        "cnpj_controle": "00",
    }
    values.update(overrides)
    return BradescoSettings(**values)


@contextmanager
def fake_txn(*args: Any, **kwargs: Any) -> Iterator[MagicMock]:
    """Stand-in for imobly.infra.db.txn yielding a mock cursor."""
    yield MagicMock()


@contextmanager
def fake_advisory_lock(acquired: bool = True):
    def _lock(name: str, conn: Any = None):
        @contextmanager
        def _cm():
            yield acquired

        return _cm()

    with patch("imobly.jobs.sync_pending.advisory_lock", side_effect=_lock) as mock_lock:
        yield mock_lock


class RecordingDispatcher(EventDispatcher):
    """EventDispatcher that keeps every dispatched event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[BoletoEvent] = []
        self.subscribe(BoletoEvent, self.events.append)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


class InMemoryStore:
    """Dict-backed faturas, pessoas, fatura_lancamentos and fatura_boletos.

    patched() swaps the repository functions the boleto core calls for
    methods of this store, and txn() for a mock cursor.
    """

    def __init__(self) -> None:
        self.invoices: dict[int, dict[str, Any]] = {}
        self.payers: dict[int, dict[str, Any]] = {}
        self.items: dict[int, list[dict[str, Any]]] = {}
        self.boletos: dict[int, dict[str, Any]] = {}
        self.transaction_updates: list[dict[str, Any]] = []
        self._next_boleto_id = 1

    # -- fixtures -----------------------------------------------------

    def add_invoice(
        self,
        invoice_id: int = 1,
        *,
        valor_total: Decimal = Decimal("985.50"),
        status: str = "Aberta",
        codigo_contrato: str | None = "CTR-2026-0042",
        vencimento: date | None = date(2026, 11, 5),
        payer: dict[str, Any] | None = TENANT,
        items: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payer_id = invoice_id * 10 if payer is not None else None
        record = {
            "id": invoice_id,
            "contrato_id": 100 + invoice_id,
            "status": status,
            "valor_total": valor_total,
            "vencimento": vencimento,
            "competencia": vencimento.replace(day=1) if vencimento else None,
            "valor_pago": None,
            "pago_em": None,
            "metodo_pagamento": None,
            "nosso_numero": None,
            "boleto_url": None,
            "observacoes": None,
            "codigo_contrato": codigo_contrato,
            "locatario_id": payer_id,
        }
        self.invoices[invoice_id] = record
        if payer is not None:
            self.payers[payer_id] = dict(payer)
        self.items[invoice_id] = list(
            items
            if items is not None
            else [
                {
                    "categoria": "Aluguel",
                    "descricao": "Aluguel mensal",
                    "valor_unitario": valor_total,
                    "valor_total": valor_total,
                }
            ]
        )
        return record

    def add_boleto(self, fatura_id: int = 1, **fields: Any) -> dict[str, Any]:
        values = {"bank_code": BANK_CODE, "status": "registered", "valor": Decimal("985.50")}
        values.update(fields)
        return self.insert_boleto(None, {"fatura_id": fatura_id, **values})

    # -- invoices_repository ------------------------------------------

    def get_invoice(self, cur: Any, invoice_id: int) -> dict[str, Any] | None:
        record = self.invoices.get(invoice_id)
        return dict(record) if record else None

    def lock_invoice(self, cur: Any, invoice_id: int) -> bool:
        return invoice_id in self.invoices

    def get_payer(self, cur: Any, pessoa_id: int) -> dict[str, Any] | None:
        payer = self.payers.get(pessoa_id)
        return dict(payer) if payer else None

    def list_items(self, cur: Any, invoice_id: int) -> list[dict[str, Any]]:
        return [dict(item) for item in self.items.get(invoice_id, [])]

    def update_invoice(self, cur: Any, invoice_id: int, fields: dict[str, Any]) -> None:
        self.invoices[invoice_id].update(fields)

    # -- financial_transactions_repository ----------------------------

    def update_from_boleto(self, cur: Any, **kwargs: Any) -> int:
        self.transaction_updates.append(kwargs)
        return 1

    # -- boletos_repository -------------------------------------------

    def _store(self, row: dict[str, Any], fields: dict[str, Any]) -> None:
        unknown = set(fields) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot write fatura_boletos columns: {sorted(unknown)}")
        for column, value in fields.items():
            row[column] = sanitize(value) if column in JSON_COLUMNS and value is not None else value

    def insert_boleto(self, cur: Any, fields: dict[str, Any]) -> dict[str, Any]:
        row: dict[str, Any] = {column: None for column in COLUMNS}
        self._store(row, fields)
        row["id"] = self._next_boleto_id
        self._next_boleto_id += 1
        self.boletos[row["id"]] = row
        return dict(row)

    def update_boleto(self, cur: Any, boleto_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        row = self.boletos[boleto_id]
        self._store(row, fields)
        return dict(row)

    def get_boleto(self, cur: Any, boleto_id: int) -> dict[str, Any] | None:
        row = self.boletos.get(boleto_id)
        return dict(row) if row else None

    lock_boleto = get_boleto

    def find_latest_for_invoice(
        self, cur: Any, invoice_id: int, statuses: list[str], bank_code: str
    ) -> dict[str, Any] | None:
        matches = [
            row
            for row in self.boletos.values()
            if row["fatura_id"] == invoice_id and row["bank_code"] == bank_code and row["status"] in statuses
        ]
        return dict(max(matches, key=lambda row: row["id"])) if matches else None

    def find_by_reference(
        self, cur: Any, *, bank_code: str, external_id: str | None, nosso_numero: str | None
    ) -> dict[str, Any] | None:
        for column, value in (("external_id", external_id), ("nosso_numero", nosso_numero)):
            if not value:
                continue
            matches = [r for r in self.boletos.values() if r["bank_code"] == bank_code and r[column] == value]
            if matches:
                return dict(max(matches, key=lambda row: row["id"]))
        return None

    def list_open_page(
        self,
        cur: Any,
        *,
        bank_code: str,
        statuses: list[str],
        limit: int,
        after: tuple[date, int] | None = None,
    ) -> list[dict[str, Any]]:
        rows = [r for r in self.boletos.values() if r["bank_code"] == bank_code and r["status"] in statuses]
        if after is not None:
            rows = [r for r in rows if (r["vencimento"], r["id"]) < after]
        rows.sort(key=lambda r: (r["vencimento"], r["id"]), reverse=True)
        return [dict(r) for r in rows[:limit]]

    def rename_cancelled_duplicates(
        self, cur: Any, *, bank_code: str, external_id: str, invoice_id: int | None = None
    ) -> int:
        renamed = 0
        for row in self.boletos.values():
            if row["external_id"] != external_id or row["status"] != "cancelled":
                continue
            if invoice_id is not None and row["fatura_id"] != invoice_id:
                continue
            row["external_id"] = f"{external_id}#{row['id']}"
            renamed += 1
        return renamed

    @contextmanager
    def patched(self) -> Iterator["InMemoryStore"]:
        with ExitStack() as stack:
            stack.enter_context(
                patch.multiple(
                    "imobly.infra.repositories.invoices_repository",
                    get_invoice=self.get_invoice,
                    lock_invoice=self.lock_invoice,
                    get_payer=self.get_payer,
                    list_items=self.list_items,
                    update_invoice=self.update_invoice,
                )
            )
            stack.enter_context(
                patch(
                    "imobly.infra.repositories.financial_transactions_repository.update_from_boleto",
                    self.update_from_boleto,
                )
            )
            stack.enter_context(
                patch.multiple(
                    "imobly.infra.repositories.boletos_repository",
                    insert_boleto=self.insert_boleto,
                    update_boleto=self.update_boleto,
                    get_boleto=self.get_boleto,
                    lock_boleto=self.lock_boleto,
                    find_latest_for_invoice=self.find_latest_for_invoice,
                    find_by_reference=self.find_by_reference,
                    list_open_page=self.list_open_page,
                    rename_cancelled_duplicates=self.rename_cancelled_duplicates,
                )
            )
            for module in TXN_MODULES:
                stack.enter_context(patch(f"{module}.txn", fake_txn))
            yield self
