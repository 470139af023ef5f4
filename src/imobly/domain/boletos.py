"""Boleto lifecycle: status vocabulary and transition rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class BoletoIssueError(Exception):
    """Invoice cannot be turned into an issue request (missing contract/payer)."""


class BoletoStateError(Exception):
    """Operation not allowed in the boleto's current status."""


class BoletoStatus(str, Enum):
    PENDING = "pending"
    REGISTERED = "registered"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BoletoStatus.PAID, BoletoStatus.CANCELLED)


REUSABLE_STATUSES = (BoletoStatus.REGISTERED, BoletoStatus.PAID)
OPEN_STATUSES = (BoletoStatus.PENDING, BoletoStatus.REGISTERED)

# Bank vocabulary, after lowercasing and stripping everything but [a-z_]
_PAID_WORDS = {"paid", "pago", "paga", "liquidado", "liquidada", "liquidadoem", "liquidadaem"}
_CANCELLED_WORDS = {
    "cancelado",
    "cancelada",
    "baixado",
    "baixada",
    "canceladoem",
    "canceladaem",
    "canceled",
    "cancelled",
}
_REGISTERED_WORDS = {"registered", "registrado", "registrada", "emitido", "emitida"}
_PENDING_WORDS = {"pending", "pendente", "aberto", "emaberto"}
_NOT_STATUS_CHARS = re.compile(r"[^a-z_]")


def resolve_internal_status(raw: Any) -> BoletoStatus | None:
    """Map a bank status string to BoletoStatus.

    Returns None when the value is empty or not part of the known vocabulary,
    so callers keep their current status.
    """
    if raw is None or raw == "":
        return None
    normalized = _NOT_STATUS_CHARS.sub("", str(raw).lower())
    if normalized in _PAID_WORDS:
        return BoletoStatus.PAID
    if normalized in _CANCELLED_WORDS:
        return BoletoStatus.CANCELLED
    if normalized in _REGISTERED_WORDS:
        return BoletoStatus.REGISTERED
    if normalized in _PENDING_WORDS:
        return BoletoStatus.PENDING
    return None


def next_status(current: BoletoStatus, reported: BoletoStatus | None) -> BoletoStatus:
    """Apply a reported status to the current one.

    Transitions only move forward (pending -> registered -> paid).
    Cancellation is accepted from pending/registered. Paid and cancelled
    are final.
    """
    if current.is_terminal or reported is None:
        return current
    if reported in (BoletoStatus.PAID, BoletoStatus.CANCELLED):
        return reported
    if reported is BoletoStatus.REGISTERED:
        return BoletoStatus.REGISTERED
    return current


@dataclass(frozen=True)
class Boleto:
    """One fatura_boletos row."""

    id: int
    fatura_id: int
    bank_code: str
    status: BoletoStatus
    external_id: str | None = None
    nosso_numero: str | None = None
    document_number: str | None = None
    linha_digitavel: str | None = None
    codigo_barras: str | None = None
    valor: Decimal | None = None
    vencimento: date | None = None
    valor_pago: Decimal | None = None
    registrado_em: datetime | None = None
    liquidado_em: datetime | None = None
    pdf_url: str | None = None
    last_synced_at: datetime | None = None
    payload: dict[str, Any] | None = field(default=None, repr=False)
    response_payload: dict[str, Any] | None = field(default=None, repr=False)
    webhook_payload: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def query_key(self) -> str | None:
        """Identifier used to query the bank (nosso numero, else external id)."""
        return self.nosso_numero or self.external_id

    def with_changes(self, **changes: Any) -> "Boleto":
        return replace(self, **changes)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Boleto":
        values = dict(record)
        values["status"] = BoletoStatus(values["status"])
        return cls(**values)
