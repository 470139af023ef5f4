"""Applies one Bradesco webhook notification to its boleto and invoice."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from imobly.bradesco.gateway import BradescoBoletoGateway, parse_amount, parse_bank_date
from imobly.domain.boletos import Boleto, BoletoStatus, next_status
from imobly.infra.repositories import boletos_repository
from imobly.infra.time import utc_now
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)


def fixture_status(payload: dict[str, Any]) -> BoletoStatus | None:
    """Status implied by a sandbox notification's "event" field."""
    event = str(payload.get("event") or "").lower()
    if "liquid" in event:
        return BoletoStatus.PAID
    if "cancel" in event:
        return BoletoStatus.CANCELLED
    return None


class BradescoWebhookProcessor:
    """Resolves the boleto of a notification and reconciles it under a row lock."""

    def __init__(self, gateway: BradescoBoletoGateway) -> None:
        self._gateway = gateway

    def handle(self, payload: dict[str, Any]) -> Boleto | None:
        """Process a webhook body.

        Unknown references are logged and dropped. Everything else runs in
        one transaction: lock, store the notification, refresh from the bank
        (or from the payload in sandbox fixtures mode) and fan out to the
        invoice. Events are dispatched after commit.

        Args:
            payload: Webhook JSON object (externalId / nossoNumero / event...).

        Returns:
            The updated boleto, or None when no boleto matched.

        Raises:
            BradescoError: Bank query failed (transaction rolled back).
        """
        external_id = str(payload.get("externalId") or "")
        nosso_numero = str(payload.get("nossoNumero") or "")

        with self._gateway.unit_of_work() as cur:
            record = boletos_repository.find_by_reference(
                cur,
                bank_code=self._gateway.bank_code,
                external_id=external_id or None,
                nosso_numero=nosso_numero or None,
            )
            if record is None:
                logger.warning(
                    "webhook for unknown boleto",
                    extra={
                        "extra_fields": safe_log_context(
                            external_id=external_id,
                            nosso_numero=nosso_numero,
                        )
                    },
                )
                return None

            locked = boletos_repository.lock_boleto(cur, record["id"])
            if locked is None:
                logger.warning(
                    "boleto vanished before lock",
                    extra={"extra_fields": safe_log_context(fatura_boleto_id=record["id"])},
                )
                return None

            boleto = Boleto.from_record(
                boletos_repository.update_boleto(cur, locked["id"], {"webhook_payload": payload})
            )

            if self._gateway.settings.fixtures_enabled:
                return self._apply_fixture(cur, boleto, payload)
            return self._gateway.reconcile(cur, boleto)

    def _apply_fixture(self, cur: PgCursor, boleto: Boleto, payload: dict[str, Any]) -> Boleto:
        status = next_status(boleto.status, fixture_status(payload))
        changes: dict[str, Any] = {"last_synced_at": utc_now()}

        if status is not boleto.status:
            changes["status"] = status.value
            paid = parse_amount(payload.get("valorPago"))
            if paid is not None:
                changes["valor_pago"] = paid
            occurred = parse_bank_date(payload.get("dataPagamento") or payload.get("dataEvento"))
            if occurred is not None:
                changes["liquidado_em"] = occurred
            if status is BoletoStatus.PAID and not boleto.pdf_url and self._gateway.settings.sandbox_pdf_url:
                changes["pdf_url"] = self._gateway.settings.sandbox_pdf_url

        updated = Boleto.from_record(boletos_repository.update_boleto(cur, boleto.id, changes))
        logger.info(
            "sandbox webhook applied",
            extra={
                "extra_fields": safe_log_context(
                    fatura_boleto_id=boleto.id,
                    previous_status=boleto.status.value,
                    status=updated.status.value,
                )
            },
        )
        self._gateway.sync_invoice(cur, updated, previous_status=boleto.status)
        return updated
