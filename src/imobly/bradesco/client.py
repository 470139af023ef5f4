"""Bradesco cobranca REST client (mTLS + OAuth client credentials).

Endpoints:
- POST /boleto/cobranca-registro/v1/cobranca   issue
- POST /boleto/cobranca-consulta/v1/consultar  query
- POST /boleto/cobranca-baixa/v1/baixar        cancel (write-off)
- POST /boleto/cobranca-pdf/v1...              PDF, with fallbacks

Only operation, endpoint and status are logged; bodies never are.
"""

from __future__ import annotations

from typing import Any

import requests

from imobly.bradesco import transport
from imobly.bradesco.errors import BradescoMalformedResponseError, BradescoRejectionError
from imobly.bradesco.settings import BANK_CODE, BradescoSettings
from imobly.bradesco.tokens import BankApiConfig, BankTokenManager

ISSUE_PATH = "/boleto/cobranca-registro/v1/cobranca"
QUERY_PATH = "/boleto/cobranca-consulta/v1/consultar"
CANCEL_PATH = "/boleto/cobranca-baixa/v1/baixar"
PDF_PATHS = (
    "/boleto/cobranca-pdf/v1",
    "/boleto/cobranca-pdf/v1/cobranca",
    "/boleto/cobranca-pdf/v1/obter",
    QUERY_PATH,
)
# PDF endpoint variants differ between bank environments
_PDF_FALLBACK_STATUSES = (404, 405)


def _pad(value: Any, width: int) -> str:
    return str(value or "").rjust(width, "0")


class BradescoApiClient:
    """Thin client over the Bradesco boleto API.

    Args:
        settings: Integration settings.
        tokens: Token manager; built from settings when omitted.
        session: Optional requests session (tests inject a mock).
    """

    bank_code = BANK_CODE

    def __init__(
        self,
        settings: BradescoSettings,
        tokens: BankTokenManager | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings
        self._session = session or requests.Session()
        self.tokens = tokens or BankTokenManager(settings, session=self._session)

    def issue_boleto(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Register a new boleto. Returns the bank's JSON object."""
        response = self._post(ISSUE_PATH, payload, operation="issue")
        return transport.json_object(response, "issue")

    def get_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]:
        """Query a boleto by nosso numero (or a partial query body)."""
        response = self._post(QUERY_PATH, self.build_query_payload(key), operation="query")
        return transport.json_object(response, "query")

    def cancel_boleto(self, key: str | dict[str, Any]) -> dict[str, Any]:
        """Request the write-off (baixa) of a boleto."""
        body = dict(key) if isinstance(key, dict) else {"nuTitulo": str(key)}
        response = self._post(CANCEL_PATH, body, operation="cancel")
        return transport.json_object(response, "cancel")

    def download_boleto_pdf(self, key: str | dict[str, Any]) -> bytes:
        """Download the boleto PDF, trying each known endpoint in order.

        Moves to the next endpoint only on 404/405.

        Raises:
            BradescoRejectionError: Last endpoint refused the request.
            BradescoMalformedResponseError: Bank answered with a non-PDF body.
        """
        body = self.build_query_payload(key)
        last_error: BradescoRejectionError | None = None

        for path in PDF_PATHS:
            try:
                response = self._post(path, body, operation="pdf", accept="application/pdf")
            except BradescoRejectionError as e:
                if e.status_code not in _PDF_FALLBACK_STATUSES:
                    raise
                last_error = e
                continue

            content_type = response.headers.get("content-type", "").lower()
            if "application/pdf" not in content_type:
                raise BradescoMalformedResponseError("pdf: response is not application/pdf")
            return response.content

        if last_error is None:
            raise BradescoMalformedResponseError("pdf: no endpoint answered")
        raise last_error

    def refresh_access_token(self, force: bool = False) -> BankApiConfig:
        return self.tokens.refresh_access_token(force=force)

    def build_query_payload(self, key: str | dict[str, Any]) -> dict[str, Any]:
        """Build the consulta body, merging beneficiary identifiers from settings."""
        requested = dict(key) if isinstance(key, dict) else {"nossoNumero": str(key)}
        if not requested.get("nossoNumero") and requested.get("nuTitulo"):
            requested["nossoNumero"] = str(requested["nuTitulo"])

        nosso_numero = requested.get("nossoNumero")
        if nosso_numero not in (None, ""):
            nosso_numero = _pad(nosso_numero, 11)

        body: dict[str, Any] = {
            "sequencia": requested.get("sequencia", "0"),
            "produto": self.settings.id_produto or None,
            "negociacao": self.settings.consulta_negociacao or self.settings.negociacao or None,
            "nossoNumero": nosso_numero,
            "nuTitulo": nosso_numero,
            "status": requested.get("status", "0"),
            "cpfCnpj": {
                "cpfCnpj": _pad(self.settings.cnpj_raiz, 8),
                "filial": _pad(self.settings.cnpj_filial, 4),
                "controle": _pad(self.settings.cnpj_controle, 2),
            },
        }
        if isinstance(requested.get("cpfCnpj"), dict):
            body["cpfCnpj"].update(requested["cpfCnpj"])

        for name, value in requested.items():
            if name in ("cpfCnpj", "nossoNumero", "nuTitulo"):
                continue
            body[name] = value
        return body

    def _post(
        self,
        path: str,
        body: dict[str, Any],
        *,
        operation: str,
        accept: str = "application/json",
    ) -> requests.Response:
        token = self.tokens.access_token()
        return transport.send(
            self._session,
            "POST",
            f"{self.tokens.base_url}{path}",
            operation=operation,
            json=body,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": accept,
            },
            cert=self.tokens.cert(),
            timeout=self.settings.timeout,
        )
