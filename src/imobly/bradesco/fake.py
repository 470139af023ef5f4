"""In-memory stand-in for BradescoApiClient (BRADESCO_USE_FAKE=1 and tests).

Responses are derived only from the request, so the same request always
yields the same identifiers.
"""

from __future__ import annotations

import copy
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from imobly.bradesco.settings import BANK_CODE, BradescoSettings
from imobly.bradesco.tokens import BankApiConfig
from imobly.infra.time import utc_now


def parse_amount(value: Any) -> float:
    """Parse "1500,75" / "1500.75" / 1500.75 into a float (0.0 when invalid)."""
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    text = str(value or "").strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(Decimal(text))
    except InvalidOperation:
        return 0.0


def _parse_due_date(value: Any) -> date | None:
    if not value:
        return None
    for fmt in ("%d.%m.%Y", "%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(str(value), fmt).date()
        except ValueError:
            continue
    return None


class FakeBradescoApiClient:
    """Deterministic fake with the BradescoApiClient contract."""

    bank_code = BANK_CODE

    def __init__(self, settings: BradescoSettings | None = None) -> None:
        self.settings = settings or BradescoSettings()
        self._storage: dict[str, dict[str, Any]] = {}
        self._config = BankApiConfig(bank_code=BANK_CODE, environment=self.settings.environment)

    def issue_boleto(self, payload: dict[str, Any]) -> dict[str, Any]:
        sequence = len(self._storage) + 1
        nu_titulo = str(payload.get("nuTitulo") or f"{sequence:011d}")
        valor = parse_amount(payload.get("vlNominalTitulo", payload.get("valor", 0)))
        due = _parse_due_date(payload.get("dtVencimentoTitulo")) or (
            _parse_due_date(payload.get("vencimento")) or utc_now().date() + timedelta(days=5)
        )
        cents = f"{int(round(valor * 100)):010d}"

        response = {
            "id": nu_titulo,
            "nuTitulo": nu_titulo,
            "nossoNumero": nu_titulo,
            "numeroDocumento": str(payload.get("nuCliente") or payload.get("numeroDocumento") or sequence),
            "linhaDigitavel": ("23790" + nu_titulo.rjust(11, "0") + due.strftime("%d%m%Y") + cents).ljust(47, "0")[:47],
            "codigoBarras": ("2379" + cents + nu_titulo.rjust(11, "0")).ljust(44, "0")[:44],
            "valor": valor,
            "dtVencimentoTitulo": payload.get("dtVencimentoTitulo", due.strftime("%d.%m.%Y")),
            "vencimento": due.isoformat(),
            "status": "registered",
            "urlPdf": f"https://example.test/boletos/{nu_titulo}.pdf",
            "criadoEm": utc_now().isoformat(),
        }
        self._storage[nu_titulo] = response
        return copy.deepcopy(response)

    def get_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]:
        stored = self._find(key)
        if stored is None:
            return {"id": self._key(key), "status": "registered"}
        return copy.deepcopy(stored)

    def cancel_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]:
        stored = self._find(key) or {"id": self._key(key)}
        stored["status"] = "canceled"
        stored["canceladoEm"] = utc_now().isoformat()
        stored["motivoCancelamento"] = (key.get("motivo") if isinstance(key, dict) else None) or "Fake cancelation"
        self._storage[str(stored.get("nossoNumero") or stored["id"])] = stored
        return copy.deepcopy(stored)

    def download_boleto_pdf(self, key: str | dict[str, Any]) -> bytes:
        return f"%PDF-1.4\n% fake boleto {self._key(key)}\n%%EOF\n".encode("ascii")

    def refresh_access_token(self, force: bool = False) -> BankApiConfig:
        if force or self._config.should_refresh_token():
            self._config.access_token = "fake-access-token"
            self._config.token_expires_at = utc_now() + timedelta(hours=1)
        return self._config

    def settle(
        self,
        key: str,
        amount: float | None = None,
        paid_on: date | None = None,
    ) -> dict[str, Any]:
        """Mark a stored boleto as liquidated (sandbox/test helper)."""
        stored = self._find(key)
        if stored is None:
            raise KeyError(key)
        stored["status"] = "liquidado"
        stored["valorPago"] = amount if amount is not None else stored.get("valor", 0)
        stored["dataPagamento"] = (paid_on or utc_now().date()).isoformat()
        return copy.deepcopy(stored)

    @staticmethod
    def _key(key: str | dict[str, Any]) -> str:
        if isinstance(key, dict):
            return str(key.get("nossoNumero") or key.get("nuTitulo") or "")
        return str(key)

    def _find(self, key: str | dict[str, Any]) -> dict[str, Any] | None:
        wanted = self._key(key)
        if wanted in self._storage:
            return self._storage[wanted]
        stripped = wanted.lstrip("0")
        for stored_key, stored in self._storage.items():
            if stored_key.lstrip("0") == stripped or str(stored.get("id")) == wanted:
                return stored
        return None
