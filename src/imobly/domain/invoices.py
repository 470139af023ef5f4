"""Invoice (fatura) view used by the boleto core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

PAYMENT_METHOD_BOLETO = "Boleto"


class InvoiceStatus(str, Enum):
    OPEN = "Aberta"
    PAID = "Paga"
    CANCELLED = "Cancelada"


class TransactionStatus(str, Enum):
    RECONCILED = "conciliado"
    CANCELLED = "cancelado"


@dataclass(frozen=True)
class Payer:
    """Tenant (locatario) data printed on the boleto."""

    nome: str | None = None
    cpf_cnpj: str | None = None
    email: str | None = None
    telefone: str | None = None
    rua: str | None = None
    numero: str | None = None
    complemento: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    estado: str | None = None
    cep: str | None = None


@dataclass(frozen=True)
class InvoiceItem:
    categoria: str | None
    descricao: str | None
    valor_unitario: Decimal | None
    valor_total: Decimal | None


@dataclass(frozen=True)
class Invoice:
    """A fatura with the contract code and, when loaded, payer and items."""

    id: int
    contrato_id: int | None
    status: str
    valor_total: Decimal
    vencimento: date | None = None
    competencia: date | None = None
    valor_pago: Decimal | None = None
    pago_em: date | None = None
    metodo_pagamento: str | None = None
    nosso_numero: str | None = None
    boleto_url: str | None = None
    observacoes: str | None = None
    codigo_contrato: str | None = None
    locatario_id: int | None = None
    payer: Payer | None = None
    items: tuple[InvoiceItem, ...] = field(default_factory=tuple)

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @classmethod
    def from_record(
        cls,
        record: dict[str, Any],
        payer: dict[str, Any] | None = None,
        items: list[dict[str, Any]] | None = None,
    ) -> "Invoice":
        return cls(
            **record,
            payer=Payer(**payer) if payer else None,
            items=tuple(InvoiceItem(**item) for item in items or []),
        )
