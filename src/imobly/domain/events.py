"""Boleto domain events and an in-process dispatcher.

Events are dispatched after the transaction that produced them commits.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Iterable

from imobly.domain.boletos import Boleto
from imobly.domain.invoices import Invoice
from imobly.observability.logging import get_logger
from imobly.observability.redaction import mask_payment_line, safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class BoletoEvent:
    invoice: Invoice
    boleto: Boleto

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class BoletoRegistered(BoletoEvent):
    """A new boleto was registered at the bank for the invoice."""


@dataclass(frozen=True)
class BoletoPaid(BoletoEvent):
    """The boleto was liquidated and the invoice marked paid."""


@dataclass(frozen=True)
class BoletoCanceled(BoletoEvent):
    """The boleto was written off and the invoice cancelled."""


Listener = Callable[[BoletoEvent], None]


class EventDispatcher:
    """Publish/subscribe by event class (subclasses match base subscriptions)."""

    def __init__(self) -> None:
        self._listeners: dict[type[BoletoEvent], list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type[BoletoEvent], listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def dispatch(self, event: BoletoEvent) -> None:
        """Deliver event to every matching listener.

        A failing listener is logged and does not stop the others: the
        state change behind the event is already committed.
        """
        for event_type, listeners in self._listeners.items():
            if not isinstance(event, event_type):
                continue
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(
                        "boleto event listener failed",
                        extra={
                            "extra_fields": safe_log_context(
                                event_name=event.name,
                                listener=getattr(listener, "__name__", type(listener).__name__),
                                fatura_boleto_id=event.boleto.id,
                            )
                        },
                    )

    def dispatch_all(self, events: Iterable[BoletoEvent]) -> None:
        for event in events:
            self.dispatch(event)


def log_boleto_event(event: BoletoEvent) -> None:
    """Default listener: one structured line per lifecycle event."""
    logger.info(
        "boleto event",
        extra={
            "extra_fields": {
                **safe_log_context(
                    event_name=event.name,
                    fatura_id=event.invoice.id,
                    fatura_boleto_id=event.boleto.id,
                    status=event.boleto.status.value,
                    valor=str(event.boleto.valor) if event.boleto.valor is not None else None,
                    valor_pago=str(event.boleto.valor_pago) if event.boleto.valor_pago is not None else None,
                ),
                "linha_digitavel": mask_payment_line(event.boleto.linha_digitavel),
            }
        },
    )


def default_dispatcher() -> EventDispatcher:
    dispatcher = EventDispatcher()
    dispatcher.subscribe(BoletoEvent, log_boleto_event)
    return dispatcher
