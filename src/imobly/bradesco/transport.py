"""Shared HTTP plumbing for Bradesco mTLS calls.

Maps requests failures onto the Bradesco error taxonomy so the token
manager and the API client classify failures the same way.
"""

from __future__ import annotations

import os
from typing import Any

import requests

from imobly.bradesco.errors import (
    BradescoConfigError,
    BradescoMalformedResponseError,
    BradescoRejectionError,
    BradescoTransportError,
)
from imobly.bradesco.sanitizer import sanitize
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)


def client_cert(cert_path: str | None, key_path: str | None) -> tuple[str, str]:
    """Return the (cert, key) pair for requests' cert= argument.

    Raises:
        BradescoConfigError: If either path is missing or unreadable.
    """
    if not cert_path or not key_path:
        raise BradescoConfigError("certificate or private key not configured for Bradesco")
    for path in (cert_path, key_path):
        if not os.path.isfile(path):
            raise BradescoConfigError(f"Bradesco TLS file not found: {os.path.basename(path)}")
    return cert_path, key_path


def send(
    session: requests.Session,
    method: str,
    url: str,
    *,
    operation: str,
    **kwargs: Any,
) -> requests.Response:
    """Send a request, raising on transport failure or non-2xx status.

    Args:
        session: requests session (mTLS cert passed per call).
        method: HTTP method.
        url: Absolute URL.
        operation: Short operation name for logs (e.g. "issue").
        **kwargs: Forwarded to session.request (json, data, cert, timeout...).

    Returns:
        The successful response.

    Raises:
        BradescoTransportError: On timeout or connection failure.
        BradescoRejectionError: On a non-2xx response.
    """
    try:
        response = session.request(method, url, **kwargs)
    except requests.Timeout as e:
        logger.warning(
            "bradesco request timed out",
            extra={"extra_fields": safe_log_context(operation=operation, error=type(e).__name__)},
        )
        raise BradescoTransportError(f"{operation}: timeout") from e
    except requests.RequestException as e:
        logger.warning(
            "bradesco request failed",
            extra={"extra_fields": safe_log_context(operation=operation, error=type(e).__name__)},
        )
        raise BradescoTransportError(f"{operation}: {type(e).__name__}") from e

    if not response.ok:
        body = _error_body(response)
        logger.error(
            "bradesco request rejected",
            extra={
                "extra_fields": safe_log_context(
                    operation=operation,
                    status_code=response.status_code,
                    error_message=_error_message(body, response),
                )
            },
        )
        raise BradescoRejectionError(
            response.status_code, _error_message(body, response), body
        )

    logger.info(
        "bradesco request completed",
        extra={
            "extra_fields": safe_log_context(
                operation=operation, status_code=response.status_code
            )
        },
    )
    return response


def json_object(response: requests.Response, operation: str) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        BradescoMalformedResponseError: If the body is not a JSON object.
    """
    try:
        decoded = response.json()
    except ValueError as e:
        raise BradescoMalformedResponseError(f"{operation}: response is not JSON") from e
    if not isinstance(decoded, dict):
        raise BradescoMalformedResponseError(f"{operation}: response is not a JSON object")
    return decoded


def _error_body(response: requests.Response) -> Any:
    try:
        return sanitize(response.json())
    except ValueError:
        content_type = response.headers.get("content-type", "") or "binary"
        return f"[{content_type} response: {len(response.content)} bytes]"


def _error_message(body: Any, response: requests.Response) -> str:
    if isinstance(body, dict):
        for key in ("mensagem", "message", "error_description", "error", "title"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason or f"HTTP {response.status_code}"
