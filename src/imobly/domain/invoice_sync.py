"""Propagates boleto lifecycle changes to the invoice and its transactions."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from psycopg2.extensions import cursor as PgCursor

from imobly.domain.boletos import Boleto, BoletoStatus
from imobly.domain.events import BoletoCanceled, BoletoEvent, BoletoPaid
from imobly.domain.invoices import (
    PAYMENT_METHOD_BOLETO,
    Invoice,
    InvoiceStatus,
    TransactionStatus,
)
from imobly.infra.repositories import financial_transactions_repository, invoices_repository
from imobly.infra.time import today, utc_now
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


class BoletoInvoiceSync:
    """Fan-out of a boleto status to faturas and financial_transactions.

    All writes use the caller's cursor, so they commit or roll back
    together with the boleto update. Returned events must be dispatched
    by the caller after commit.
    """

    def sync(
        self,
        cur: PgCursor,
        boleto: Boleto,
        previous_status: BoletoStatus | None = None,
    ) -> BoletoEvent | None:
        """Apply a paid/cancelled boleto to its invoice.

        Args:
            cur: Database cursor (inside the boleto's transaction).
            boleto: Boleto after refresh.
            previous_status: Status before the refresh. When unchanged and
                the invoice already reflects it, nothing is written.

        Returns:
            BoletoPaid / BoletoCanceled when the invoice changed, else None.
        """
        if boleto.status not in (BoletoStatus.PAID, BoletoStatus.CANCELLED):
            return None

        record = invoices_repository.get_invoice(cur, boleto.fatura_id)
        if record is None:
            logger.warning(
                "boleto has no invoice to sync",
                extra={
                    "extra_fields": safe_log_context(
                        fatura_boleto_id=boleto.id,
                        external_id=boleto.external_id,
                        status=boleto.status.value,
                    )
                },
            )
            return None
        invoice = Invoice.from_record(record)

        if boleto.status is BoletoStatus.PAID:
            if previous_status is BoletoStatus.PAID and invoice.is_paid:
                return None
            return self._mark_paid(cur, invoice, boleto)

        if previous_status is BoletoStatus.CANCELLED and invoice.status == InvoiceStatus.CANCELLED:
            return None
        return self._mark_cancelled(cur, invoice, boleto)

    def sync_issued(self, cur: PgCursor, invoice: Invoice, boleto: Boleto) -> None:
        """Copy boleto references onto the invoice after (re)issue.

        A cancelled invoice is reopened since it has a live boleto again.
        """
        fields: dict[str, object] = {
            "nosso_numero": boleto.nosso_numero or invoice.nosso_numero,
            "boleto_url": boleto.pdf_url or invoice.boleto_url,
            "metodo_pagamento": invoice.metodo_pagamento or PAYMENT_METHOD_BOLETO,
        }
        if invoice.status == InvoiceStatus.CANCELLED:
            fields.update(status=InvoiceStatus.OPEN.value, valor_pago=None, pago_em=None)
        invoices_repository.update_invoice(cur, invoice.id, fields)

    def _mark_paid(self, cur: PgCursor, invoice: Invoice, boleto: Boleto) -> BoletoEvent:
        valor_pago = boleto.valor_pago if boleto.valor_pago is not None else boleto.valor
        pago_em = _as_date(boleto.liquidado_em) or today()
        fields = {
            "status": InvoiceStatus.PAID.value,
            "metodo_pagamento": PAYMENT_METHOD_BOLETO,
            "valor_pago": valor_pago,
            "pago_em": pago_em,
            "nosso_numero": boleto.nosso_numero or invoice.nosso_numero,
            "boleto_url": boleto.pdf_url or invoice.boleto_url,
        }
        invoices_repository.update_invoice(cur, invoice.id, fields)
        self._update_transactions(cur, invoice, boleto, TransactionStatus.RECONCILED, pago_em)

        logger.info(
            "invoice marked paid from boleto",
            extra={
                "extra_fields": safe_log_context(
                    fatura_id=invoice.id,
                    fatura_boleto_id=boleto.id,
                    valor_pago=str(valor_pago),
                    pago_em=pago_em.isoformat(),
                )
            },
        )
        return BoletoPaid(invoice=_updated(invoice, fields), boleto=boleto)

    def _mark_cancelled(self, cur: PgCursor, invoice: Invoice, boleto: Boleto) -> BoletoEvent | None:
        if invoice.is_paid:
            logger.info(
                "boleto cancelled but invoice stays paid",
                extra={
                    "extra_fields": safe_log_context(
                        fatura_id=invoice.id,
                        fatura_boleto_id=boleto.id,
                    )
                },
            )
            return None

        fields = {
            "status": InvoiceStatus.CANCELLED.value,
            "metodo_pagamento": invoice.metodo_pagamento or PAYMENT_METHOD_BOLETO,
        }
        invoices_repository.update_invoice(cur, invoice.id, fields)
        self._update_transactions(
            cur, invoice, boleto, TransactionStatus.CANCELLED, _as_date(boleto.last_synced_at)
        )

        logger.info(
            "invoice cancelled from boleto",
            extra={
                "extra_fields": safe_log_context(
                    fatura_id=invoice.id,
                    fatura_boleto_id=boleto.id,
                )
            },
        )
        return BoletoCanceled(invoice=_updated(invoice, fields), boleto=boleto)

    def _update_transactions(
        self,
        cur: PgCursor,
        invoice: Invoice,
        boleto: Boleto,
        status: TransactionStatus,
        data_ocorrencia: date | None,
    ) -> None:
        synced_at = boleto.last_synced_at or utc_now()
        financial_transactions_repository.update_from_boleto(
            cur,
            invoice_id=invoice.id,
            status=status.value,
            data_ocorrencia=data_ocorrencia,
            boleto_sync={
                "fatura_boleto_id": boleto.id,
                "status": boleto.status.value,
                "last_synced_at": synced_at.isoformat(),
            },
        )


def _updated(invoice: Invoice, fields: dict[str, object]) -> Invoice:
    return replace(invoice, **fields)
