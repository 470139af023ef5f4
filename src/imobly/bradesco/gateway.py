"""Boleto orchestration: issue, refresh, cancel and PDF storage.

Every method works on the caller's cursor so bank-derived writes and the
invoice fan-out commit together. Domain events are recorded while the
transaction runs and dispatched by unit_of_work() after commit.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Protocol

from psycopg2.extensions import cursor as PgCursor

from imobly.bradesco.errors import BradescoError
from imobly.bradesco.payloads import build_issue_payload
from imobly.bradesco.settings import BANK_CODE, BradescoSettings
from imobly.domain.boletos import (
    REUSABLE_STATUSES,
    Boleto,
    BoletoIssueError,
    BoletoStateError,
    BoletoStatus,
    next_status,
    resolve_internal_status,
)
from imobly.domain.events import BoletoEvent, BoletoRegistered, EventDispatcher, default_dispatcher
from imobly.domain.invoice_sync import BoletoInvoiceSync
from imobly.domain.invoices import Invoice
from imobly.infra.db import txn
from imobly.infra.repositories import boletos_repository, invoices_repository
from imobly.infra.storage import PdfStorage
from imobly.infra.time import utc_now
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)

EXTERNAL_ID_KEYS = ("id", "nuTituloGerado", "nuTitulo", "nuTituloOriginal")


class BoletoApiClient(Protocol):
    """Contract shared by BradescoApiClient and FakeBradescoApiClient."""

    def issue_boleto(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def get_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]: ...

    def cancel_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]: ...

    def download_boleto_pdf(self, key: str | dict[str, Any]) -> bytes: ...


def resolve_external_id(response: dict[str, Any]) -> str | None:
    """First non-empty bank identifier of an issue response."""
    for key in EXTERNAL_ID_KEYS:
        value = response.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def _nested(response: dict[str, Any], *paths: str) -> Any:
    """First non-None value among dotted paths ("titulo.status", "status")."""
    for path in paths:
        current: Any = response
        for part in path.split("."):
            if not isinstance(current, dict):
                current = None
                break
            current = current.get(part)
        if current is not None:
            return current
    return None


def parse_bank_date(value: Any) -> datetime | None:
    """Parse ddmmyyyy, dd/mm/yyyy, dd.mm.yyyy or ISO dates. None when invalid."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if re.fullmatch(r"\d{8}", text):
        formats = ("%d%m%Y",)
    elif re.fullmatch(r"\d{2}/\d{2}/\d{4}", text):
        formats = ("%d/%m/%Y",)
    elif re.fullmatch(r"\d{2}\.\d{2}\.\d{4}", text):
        formats = ("%d.%m.%Y",)
    else:
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None

    try:
        return datetime.strptime(text, formats[0])
    except ValueError:
        return None


def parse_amount(value: Any) -> Decimal | None:
    """Bank amount ("1.500,75", "1500.75", 1500.75) as Decimal. None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def _as_date(value: datetime | date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


class BradescoBoletoGateway:
    """Domain operations over the Bradesco API.

    Args:
        client: Real or fake API client.
        settings: Integration settings.
        storage: Destination for downloaded PDFs.
        invoice_sync: Invoice / financial transaction fan-out.
        dispatcher: Receives events after commit.
    """

    bank_code = BANK_CODE

    def __init__(
        self,
        client: BoletoApiClient,
        settings: BradescoSettings,
        storage: PdfStorage | None = None,
        invoice_sync: BoletoInvoiceSync | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.storage = storage or PdfStorage(settings.pdf_root, settings.pdf_public_url)
        self.invoice_sync = invoice_sync or BoletoInvoiceSync()
        self.dispatcher = dispatcher or default_dispatcher()
        self._recorded: list[BoletoEvent] = []

    # ------------------------------------------------------------------
    # Transaction / events
    # ------------------------------------------------------------------

    @contextmanager
    def unit_of_work(self) -> Iterator[PgCursor]:
        """Run a transaction and dispatch the events it recorded after commit.

        On rollback the recorded events are discarded.
        """
        self._recorded = []
        try:
            with txn() as cur:
                yield cur
        except BaseException:
            self._recorded = []
            raise
        events, self._recorded = self._recorded, []
        self.dispatcher.dispatch_all(events)

    def record(self, event: BoletoEvent | None) -> None:
        if event is not None:
            self._recorded.append(event)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def load_invoice(self, cur: PgCursor, invoice_id: int) -> Invoice:
        """Load an invoice with payer and items, locking its row.

        Raises:
            BoletoIssueError: Invoice does not exist.
        """
        if not invoices_repository.lock_invoice(cur, invoice_id):
            raise BoletoIssueError(f"invoice {invoice_id} not found")
        record = invoices_repository.get_invoice(cur, invoice_id)
        if record is None:
            raise BoletoIssueError(f"invoice {invoice_id} not found")

        payer = None
        if record["locatario_id"] is not None:
            payer = invoices_repository.get_payer(cur, record["locatario_id"])
        items = invoices_repository.list_items(cur, invoice_id)
        return Invoice.from_record(record, payer=payer, items=items)

    def issue(
        self,
        cur: PgCursor,
        invoice: Invoice | int,
        context: dict[str, Any] | None = None,
    ) -> Boleto:
        """Issue (or reuse) the boleto of an invoice.

        A registered or paid boleto is returned as is. Otherwise the bank
        registers a new one, which replaces the latest pending row or is
        inserted, and BoletoRegistered is recorded.

        Args:
            cur: Database cursor.
            invoice: Invoice (with payer/items) or its id.
            context: Optional payload overrides (see imobly.bradesco.payloads).

        Returns:
            The invoice's current boleto.

        Raises:
            BoletoIssueError: Invoice missing or without payer.
            BradescoError: Bank call failed.
        """
        if isinstance(invoice, int):
            loaded = self.load_invoice(cur, invoice)
        elif invoices_repository.lock_invoice(cur, invoice.id):
            loaded = invoice
        else:
            raise BoletoIssueError(f"invoice {invoice.id} not found")

        existing = boletos_repository.find_latest_for_invoice(
            cur, loaded.id, [s.value for s in REUSABLE_STATUSES], self.bank_code
        )
        if existing is not None:
            logger.info(
                "boleto reused",
                extra={
                    "extra_fields": safe_log_context(
                        fatura_id=loaded.id,
                        fatura_boleto_id=existing["id"],
                        status=existing["status"],
                    )
                },
            )
            return Boleto.from_record(existing)

        payload = build_issue_payload(self.settings, loaded, context)
        logger.info(
            "boleto issue requested",
            extra={"extra_fields": safe_log_context(fatura_id=loaded.id, bank_code=self.bank_code)},
        )
        response = self.client.issue_boleto(payload)

        external_id = resolve_external_id(response)
        if external_id and self.settings.fixtures_enabled:
            boletos_repository.rename_cancelled_duplicates(
                cur, bank_code=self.bank_code, external_id=external_id, invoice_id=loaded.id
            )

        pdf_url = response.get("urlPdf") or None
        if not pdf_url and self.settings.is_sandbox:
            pdf_url = self.settings.sandbox_pdf_url or None

        reported = resolve_internal_status(_nested(response, "titulo.status", "status"))
        vencimento = (
            _as_date(parse_bank_date(response.get("vencimento"))) or loaded.vencimento or utc_now().date()
        )
        valor = parse_amount(response.get("valor"))

        fields = {
            "bank_code": self.bank_code,
            "status": (reported or BoletoStatus.REGISTERED).value,
            "external_id": external_id,
            "nosso_numero": response.get("nossoNumero") or external_id,
            "document_number": response.get("numeroDocumento"),
            "linha_digitavel": response.get("linhaDigitavel"),
            "codigo_barras": response.get("codigoBarras"),
            "valor": valor if valor is not None else loaded.valor_total,
            "vencimento": vencimento,
            "registrado_em": utc_now(),
            "pdf_url": pdf_url,
            "payload": payload,
            "response_payload": response,
        }

        pending = boletos_repository.find_latest_for_invoice(
            cur, loaded.id, [BoletoStatus.PENDING.value], self.bank_code
        )
        if pending is not None:
            row = boletos_repository.update_boleto(cur, pending["id"], fields)
        else:
            row = boletos_repository.insert_boleto(cur, {"fatura_id": loaded.id, **fields})
        boleto = Boleto.from_record(row)

        if not boleto.pdf_url:
            try:
                url = self.fetch_and_store_pdf(cur, boleto)
            except (BradescoError, OSError, ValueError) as e:
                logger.warning(
                    "boleto pdf not stored",
                    extra={
                        "extra_fields": safe_log_context(
                            fatura_boleto_id=boleto.id,
                            error_type=type(e).__name__,
                        )
                    },
                )
            else:
                if url:
                    boleto = boleto.with_changes(pdf_url=url)

        self.invoice_sync.sync_issued(cur, loaded, boleto)
        self.record(BoletoRegistered(invoice=loaded, boleto=boleto))

        logger.info(
            "boleto issued",
            extra={
                "extra_fields": safe_log_context(
                    fatura_id=loaded.id,
                    fatura_boleto_id=boleto.id,
                    external_id=boleto.external_id,
                    status=boleto.status.value,
                )
            },
        )
        return boleto

    # ------------------------------------------------------------------
    # Refresh / reconcile
    # ------------------------------------------------------------------

    def refresh_status(self, cur: PgCursor, boleto: Boleto) -> Boleto:
        """Query the bank and apply the reported status to the boleto.

        Paid and cancelled boletos keep their status and settlement fields;
        only last_synced_at and response_payload change.
        """
        key = boleto.query_key
        if not key:
            logger.warning(
                "boleto has no bank reference to sync",
                extra={"extra_fields": safe_log_context(fatura_boleto_id=boleto.id)},
            )
            return boleto

        response = self.client.get_boleto(key)
        reported = resolve_internal_status(_nested(response, "titulo.status", "status"))
        status = next_status(boleto.status, reported)

        changes: dict[str, Any] = {
            "last_synced_at": utc_now(),
            "response_payload": response,
        }
        if not boleto.status.is_terminal:
            for column, source in (
                ("linha_digitavel", "linhaDigitavel"),
                ("codigo_barras", "codigoBarras"),
                ("pdf_url", "urlPdf"),
            ):
                if response.get(source):
                    changes[column] = response[source]

        if status is not boleto.status:
            changes["status"] = status.value
            if status is BoletoStatus.PAID:
                paid = parse_amount(_nested(response, "titulo.vlrPagto", "valorPago"))
                if not paid:
                    paid = boleto.valor_pago or boleto.valor
                paid_at = parse_bank_date(_nested(response, "titulo.dtPagto", "dtPagto", "dataPagamento"))
                changes["valor_pago"] = paid
                changes["liquidado_em"] = paid_at or changes["last_synced_at"]

        refreshed = Boleto.from_record(boletos_repository.update_boleto(cur, boleto.id, changes))

        logger.info(
            "boleto refreshed",
            extra={
                "extra_fields": safe_log_context(
                    fatura_boleto_id=boleto.id,
                    external_id=boleto.external_id,
                    previous_status=boleto.status.value,
                    status=refreshed.status.value,
                )
            },
        )
        return refreshed

    def sync_invoice(
        self,
        cur: PgCursor,
        boleto: Boleto,
        previous_status: BoletoStatus | None = None,
    ) -> BoletoEvent | None:
        """Fan a boleto status out to its invoice and record the event."""
        event = self.invoice_sync.sync(cur, boleto, previous_status)
        self.record(event)
        return event

    def reconcile(self, cur: PgCursor, boleto: Boleto) -> Boleto:
        """refresh_status followed by the invoice fan-out."""
        refreshed = self.refresh_status(cur, boleto)
        self.sync_invoice(cur, refreshed, previous_status=boleto.status)
        return refreshed

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self, cur: PgCursor, boleto: Boleto, reason: str | None = None) -> Boleto:
        """Write the boleto off at the bank and mark it cancelled.

        A boleto never registered at the bank is cancelled locally.

        Raises:
            BoletoStateError: The boleto is paid.
            BradescoError: Bank call failed.
        """
        if boleto.status is BoletoStatus.PAID:
            raise BoletoStateError(f"boleto {boleto.id} is paid and cannot be cancelled")
        if boleto.status is BoletoStatus.CANCELLED:
            return boleto

        changes: dict[str, Any] = {
            "status": BoletoStatus.CANCELLED.value,
            "last_synced_at": utc_now(),
        }
        if boleto.external_id:
            body = {"nuTitulo": boleto.external_id, "motivo": reason}
            body = {k: v for k, v in body.items() if v is not None and v != ""}
            logger.info(
                "boleto cancel requested",
                extra={
                    "extra_fields": safe_log_context(
                        fatura_boleto_id=boleto.id,
                        external_id=boleto.external_id,
                    )
                },
            )
            changes["response_payload"] = self.client.cancel_boleto(body)

        cancelled = Boleto.from_record(boletos_repository.update_boleto(cur, boleto.id, changes))
        self.sync_invoice(cur, cancelled, previous_status=boleto.status)

        logger.info(
            "boleto cancelled",
            extra={"extra_fields": safe_log_context(fatura_boleto_id=boleto.id)},
        )
        return cancelled

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def fetch_and_store_pdf(self, cur: PgCursor, boleto: Boleto) -> str | None:
        """Download the PDF through the client and store it.

        Returns:
            The boleto's PDF URL (existing or new), or None when the boleto
            has no bank reference or the bank returned an empty body.
        """
        if boleto.pdf_url:
            return boleto.pdf_url
        key = boleto.query_key
        if not key:
            return None

        content = self.client.download_boleto_pdf(key)
        if not content:
            return None

        prefix = self.settings.pdf_path.strip("/")
        filename = f"{boleto.nosso_numero or boleto.external_id}.pdf"
        relative = f"{prefix}/{filename}" if prefix else filename
        url = self.storage.put(relative, content)

        boletos_repository.update_boleto(cur, boleto.id, {"pdf_url": url})
        logger.info(
            "boleto pdf stored",
            extra={"extra_fields": safe_log_context(fatura_boleto_id=boleto.id, path=relative)},
        )
        return url
