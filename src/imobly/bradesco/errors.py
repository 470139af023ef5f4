"""Bradesco integration error taxonomy.

Callers decide retry policy from the exception class:
- BradescoTransportError: network/timeout, safe to retry later.
- BradescoRejectionError: the bank answered with a non-2xx status.
- BradescoMalformedResponseError: 2xx with a body we cannot use.
- BradescoConfigError: local misconfiguration (certificates, credentials).
"""

from __future__ import annotations

from typing import Any


class BradescoError(Exception):
    """Base class for Bradesco integration failures."""


class BradescoConfigError(BradescoError):
    """Certificate, key or credentials are missing."""


class BradescoTransportError(BradescoError):
    """Request did not complete (timeout, DNS, TLS, connection reset)."""

    retryable = True


class BradescoRejectionError(BradescoError):
    """Bank returned a non-success HTTP status."""

    retryable = False

    def __init__(self, status_code: int, message: str, body: Any = None) -> None:
        super().__init__(f"bradesco rejected request: status={status_code} {message}")
        self.status_code = status_code
        self.message = message
        self.body = body


class BradescoMalformedResponseError(BradescoError):
    """Response body is not the JSON object the contract requires."""

    retryable = False
