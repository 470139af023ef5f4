"""Periodic reconciliation of open Bradesco boletos."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from imobly.bradesco.gateway import BradescoBoletoGateway
from imobly.domain.boletos import OPEN_STATUSES, Boleto
from imobly.infra.db import advisory_lock, txn
from imobly.infra.repositories import boletos_repository
from imobly.observability.logging import get_logger
from imobly.observability.redaction import redact_value, safe_log_context

logger = get_logger(__name__)

LOCK_NAME = "bradesco:sync-pending"
DEFAULT_BATCH_SIZE = 50


@dataclass
class SyncSummary:
    processed: int = 0
    changed: int = 0
    failed: int = 0
    skipped_run: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncPendingBoletosJob:
    """Polls pending/registered boletos and reconciles them one by one.

    Only one run executes at a time (PostgreSQL advisory lock). Each boleto
    is refreshed in its own transaction, so one failure does not undo the
    others.
    """

    def __init__(self, gateway: BradescoBoletoGateway) -> None:
        self._gateway = gateway

    def run(self, batch_size: int = DEFAULT_BATCH_SIZE) -> SyncSummary:
        batch_size = max(int(batch_size), 1)
        summary = SyncSummary()

        with advisory_lock(LOCK_NAME) as acquired:
            if not acquired:
                logger.info("boleto sync already running, skipping")
                summary.skipped_run = True
                return summary

            after = None
            while True:
                with txn() as cur:
                    page = boletos_repository.list_open_page(
                        cur,
                        bank_code=self._gateway.bank_code,
                        statuses=[s.value for s in OPEN_STATUSES],
                        limit=batch_size,
                        after=after,
                    )
                for record in page:
                    self._sync_one(record, summary)

                if len(page) < batch_size:
                    break
                after = (page[-1]["vencimento"], page[-1]["id"])

        logger.info("boleto sync finished", extra={"extra_fields": safe_log_context(**summary.as_dict())})
        return summary

    def _sync_one(self, record: dict[str, Any], summary: SyncSummary) -> None:
        try:
            with self._gateway.unit_of_work() as cur:
                locked = boletos_repository.lock_boleto(cur, record["id"])
                if locked is None:
                    return
                boleto = Boleto.from_record(locked)
                if boleto.status not in OPEN_STATUSES:
                    return
                refreshed = self._gateway.reconcile(cur, boleto)
        except Exception as e:
            summary.failed += 1
            logger.error(
                "boleto sync failed",
                extra={
                    "extra_fields": safe_log_context(
                        fatura_boleto_id=record["id"],
                        external_id=record.get("external_id"),
                        error_type=type(e).__name__,
                        error=redact_value(str(e)),
                    )
                },
            )
            return

        summary.processed += 1
        if refreshed.status is not boleto.status:
            summary.changed += 1
