"""Bradesco credential resolution and OAuth token cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import requests

from imobly.bradesco import transport
from imobly.bradesco.errors import BradescoMalformedResponseError
from imobly.bradesco.settings import BANK_CODE, BradescoSettings
from imobly.infra.db import txn
from imobly.infra.repositories import bank_api_configs_repository
from imobly.infra.time import utc_now
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)

TOKEN_PATH = "/auth/server-mtls/v2/token"
# Refresh ahead of expiry so in-flight requests never carry a dead token
REFRESH_MARGIN = timedelta(minutes=5)
EXPIRY_SKEW_SECONDS = 60


@dataclass
class BankApiConfig:
    """Credentials and token state for one bank/environment.

    Rows loaded from bank_api_configs carry an id; transient configs built
    from environment settings have id None and keep their token in memory.
    """

    bank_code: str
    environment: str
    client_id: str = ""
    client_secret: str = ""
    certificate_path: str = ""
    key_path: str = ""
    webhook_secret: str = ""
    access_token: str | None = None
    token_expires_at: datetime | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    active: bool = True
    id: int | None = None

    def should_refresh_token(self, now: datetime | None = None) -> bool:
        if not self.access_token or self.token_expires_at is None:
            return True
        now = now or utc_now()
        return self.token_expires_at - now < REFRESH_MARGIN

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "BankApiConfig":
        return cls(
            id=row["id"],
            bank_code=row["bank_code"],
            environment=row["environment"],
            client_id=row.get("client_id") or "",
            client_secret=row.get("client_secret") or "",
            certificate_path=row.get("certificate_path") or "",
            key_path=row.get("key_path") or "",
            webhook_secret=row.get("webhook_secret") or "",
            access_token=row.get("access_token"),
            token_expires_at=row.get("token_expires_at"),
            settings=dict(row.get("settings") or {}),
            active=bool(row.get("active", True)),
        )

    @classmethod
    def from_settings(cls, settings: BradescoSettings) -> "BankApiConfig":
        return cls(
            bank_code=BANK_CODE,
            environment=settings.environment,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            certificate_path=settings.cert_path,
            key_path=settings.key_path,
            webhook_secret=settings.webhook_secret,
            settings={"base_url": settings.base_url},
        )


def resolve_config(settings: BradescoSettings, bank_code: str = BANK_CODE) -> BankApiConfig:
    """Load the config for settings.environment.

    Preference: active row, any row for the pair, then a transient config
    built from environment variables.
    """
    with txn() as cur:
        row = bank_api_configs_repository.find_config(
            cur, bank_code=bank_code, environment=settings.environment
        )
    if row is None:
        return BankApiConfig.from_settings(settings)
    return BankApiConfig.from_row(row)


class BankTokenManager:
    """Issues and caches client-credentials tokens over mTLS.

    Concurrent refreshes are tolerated: the last writer wins and both
    tokens remain valid at the bank.
    """

    def __init__(
        self,
        settings: BradescoSettings,
        config: BankApiConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings
        self._config = config
        self._session = session or requests.Session()

    @property
    def config(self) -> BankApiConfig:
        if self._config is None:
            self._config = resolve_config(self._settings)
        return self._config

    @property
    def base_url(self) -> str:
        return (self.config.settings.get("base_url") or self._settings.base_url).rstrip("/")

    def cert(self) -> tuple[str, str]:
        return transport.client_cert(
            self.config.certificate_path or self._settings.cert_path,
            self.config.key_path or self._settings.key_path,
        )

    def access_token(self) -> str:
        """Return a usable token, refreshing it when close to expiry."""
        return self.refresh_access_token().access_token or ""

    def refresh_access_token(self, force: bool = False) -> BankApiConfig:
        """Refresh the token when forced, missing or expiring within 5 minutes.

        Args:
            force: Always request a new token.

        Returns:
            The config carrying the current token.

        Raises:
            BradescoConfigError: Certificate or key missing.
            BradescoTransportError: Token endpoint unreachable.
            BradescoRejectionError: Token endpoint refused the credentials.
            BradescoMalformedResponseError: Response lacks access_token.
        """
        config = self.config
        if force or config.should_refresh_token():
            self._obtain_token(config)
        return config

    def _obtain_token(self, config: BankApiConfig) -> None:
        response = transport.send(
            self._session,
            "POST",
            f"{self.base_url}{TOKEN_PATH}",
            operation="token",
            data={
                "grant_type": "client_credentials",
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
            headers={"Accept": "application/json"},
            cert=self.cert(),
            timeout=self._settings.timeout,
        )
        body = transport.json_object(response, "token")
        access_token = body.get("access_token")
        if not access_token:
            raise BradescoMalformedResponseError("token: access_token missing from response")

        try:
            expires_in = int(body.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        config.access_token = str(access_token)
        config.token_expires_at = utc_now() + timedelta(
            seconds=max(expires_in - EXPIRY_SKEW_SECONDS, EXPIRY_SKEW_SECONDS)
        )

        if config.id is not None:
            with txn() as cur:
                bank_api_configs_repository.save_token(
                    cur,
                    config_id=config.id,
                    access_token=config.access_token,
                    token_expires_at=config.token_expires_at,
                )

        logger.info(
            "bradesco token refreshed",
            extra={
                "extra_fields": safe_log_context(
                    bank_api_config_id=config.id,
                    environment=config.environment,
                    expires_in=expires_in,
                )
            },
        )
