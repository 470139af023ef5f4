"""Bradesco boleto settings loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

BANK_CODE = "bradesco"


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "s")


def _env_json(name: str) -> dict[str, Any]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"{name} must be a JSON object")
    return parsed


@dataclass(frozen=True)
class BradescoSettings:
    """Static integration settings.

    Credentials may also come from the bank_api_configs table; these values
    are the fallback used when no row exists for the environment.

    Attributes:
        environment: "sandbox" or "production".
        use_fake: Swap the HTTP client for the in-memory fake.
        sandbox_use_fixtures: Derive webhook outcomes from the payload
            instead of querying the bank (sandbox only).
        sandbox_payload_overrides: Fields forced into issue requests when
            fixtures are enabled.
    """

    base_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    cert_path: str = ""
    key_path: str = ""
    webhook_secret: str = ""
    environment: str = "sandbox"
    timeout: float = 10.0
    use_fake: bool = False

    id_produto: str = ""
    negociacao: str = ""
    consulta_negociacao: str = ""
    convenio: str = ""
    cod_especie: str = ""
    cnpj_raiz: str = ""
    cnpj_filial: str = ""
    cnpj_controle: str = ""

    registra_titulo: str = "S"
    tipo_vencimento: str = "0"
    indicador_moeda: str = "1"
    quantidade_moeda: str = "0"
    indicador_aceite_sacado: str = "2"
    tp_protesto: str = "0"
    prazo_protesto: str = "00"
    tipo_decurso: str = "0"
    tipo_dias_decurso: str = "0"
    tipo_prazo_tres: str = "000"

    pdf_root: str = "storage/public"
    pdf_path: str = "boletos/bradesco"
    pdf_public_url: str = "/storage"
    sandbox_pdf_url: str = ""
    sandbox_use_fixtures: bool = False
    sandbox_payload_overrides: dict[str, Any] = field(default_factory=dict)

    @property
    def is_sandbox(self) -> bool:
        return self.environment.lower() == "sandbox"

    @property
    def fixtures_enabled(self) -> bool:
        return self.is_sandbox and self.sandbox_use_fixtures

    @classmethod
    def from_env(cls) -> "BradescoSettings":
        """Build settings from BRADESCO_* environment variables."""
        return cls(
            base_url=_env("BRADESCO_BASE_URL"),
            client_id=_env("BRADESCO_CLIENT_ID"),
            client_secret=_env("BRADESCO_CLIENT_SECRET"),
            cert_path=_env("BRADESCO_TLS_CERT_PATH") or _env("BRADESCO_CERT_PATH"),
            key_path=_env("BRADESCO_TLS_KEY_PATH"),
            webhook_secret=_env("BRADESCO_WEBHOOK_SECRET"),
            environment=_env("BRADESCO_ENV", "sandbox") or "sandbox",
            timeout=float(_env("BRADESCO_TIMEOUT", "10") or 10),
            use_fake=_env_bool("BRADESCO_USE_FAKE"),
            id_produto=_env("BRADESCO_ID_PRODUTO"),
            negociacao=_env("BRADESCO_NEGOCIACAO"),
            consulta_negociacao=_env("BRADESCO_CONSULTA_NEGOCIACAO"),
            convenio=_env("BRADESCO_CONVENIO"),
            cod_especie=_env("BRADESCO_COD_ESPECIE"),
            cnpj_raiz=_env("BRADESCO_CNPJ_RAIZ"),
            cnpj_filial=_env("BRADESCO_CNPJ_FILIAL"),
            cnpj_controle=_env("BRADESCO_CNPJ_CONTROLE"),
            registra_titulo=_env("BRADESCO_REGISTRA_TITULO", "S"),
            tipo_vencimento=_env("BRADESCO_TP_VENCIMENTO", "0"),
            indicador_moeda=_env("BRADESCO_INDICADOR_MOEDA", "1"),
            quantidade_moeda=_env("BRADESCO_QTDE_MOEDA", "0"),
            indicador_aceite_sacado=_env("BRADESCO_INDICADOR_ACEITE", "2"),
            tp_protesto=_env("BRADESCO_TP_PROTESTO", "0"),
            prazo_protesto=_env("BRADESCO_PRAZO_PROTESTO", "00"),
            tipo_decurso=_env("BRADESCO_TIPO_DECURSO", "0"),
            tipo_dias_decurso=_env("BRADESCO_TIPO_DIAS_DECURSO", "0"),
            tipo_prazo_tres=_env("BRADESCO_TIPO_PRAZO_TRES", "000"),
            pdf_root=_env("BRADESCO_PDF_ROOT", "storage/public"),
            pdf_path=_env("BRADESCO_PDF_PATH", "boletos/bradesco"),
            pdf_public_url=_env("BRADESCO_PDF_PUBLIC_URL", "/storage"),
            sandbox_pdf_url=_env("BRADESCO_SANDBOX_PDF_URL"),
            sandbox_use_fixtures=_env_bool("BRADESCO_SANDBOX_USE_FIXTURES"),
            sandbox_payload_overrides=_env_json("BRADESCO_SANDBOX_PAYLOAD_OVERRIDES"),
        )
