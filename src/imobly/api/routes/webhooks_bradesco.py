"""Bradesco webhook route - public endpoint for boleto notifications.

Security rules:
- Shared secret (X-Webhook-Token or Authorization: Bearer) checked in
  constant time on every request; no secret configured means 401.
- Never log the body or the token.
- The body is sanitized before it is enqueued.
- Return 5xx if enqueue fails (so the bank retries).
- Every delivery gets its own task; repeats are absorbed by the processor.
- No business logic here - just receipt + enqueue.
"""

from __future__ import annotations

import hmac
import os
import uuid

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from imobly.api.task_auth import extract_bearer_token
from imobly.bradesco.sanitizer import sanitize
from imobly.observability.correlation import get_correlation_id
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context
from imobly.tasks.client import TasksClient

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

PROCESS_WEBHOOK_PATH = "/tasks/bradesco/process-webhook"

# Tasks client singleton
_tasks_client = TasksClient()


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    return _tasks_client


def _get_webhook_secret() -> str:
    return os.environ.get("BRADESCO_WEBHOOK_SECRET", "").strip()


def _provided_token(request: Request) -> str:
    """X-Webhook-Token header, else the bearer token."""
    return request.headers.get("X-Webhook-Token") or extract_bearer_token(request) or ""


def is_authorized(request: Request, secret: str) -> bool:
    provided = _provided_token(request)
    if not secret or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


def webhook_task_id() -> str:
    """Task id for one delivery.

    Notifications carry no status, so identical bodies can announce
    different bank events and must not share a task.
    """
    return f"bradesco-webhook:{uuid.uuid4().hex}"


@router.post("/webhooks/bradesco")
async def bradesco_webhook(request: Request) -> JSONResponse:
    """Receive a Bradesco boleto notification.

    Returns:
        200 {"received": true} once the task is enqueued.
        401 on a missing/invalid token or when no secret is configured.
        400 if the body is not a JSON object.
        500 if enqueue fails.
    """
    correlation_id = get_correlation_id()

    if not is_authorized(request, _get_webhook_secret()):
        logger.warning(
            "bradesco webhook rejected: invalid token",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    has_token=bool(_provided_token(request)),
                    secret_configured=bool(_get_webhook_secret()),
                )
            },
        )
        return JSONResponse(status_code=401, content={"received": False, "error": "unauthorized"})

    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning(
            "bradesco webhook invalid body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"received": False, "error": "invalid json"})

    sanitized = sanitize(payload)
    task_id = webhook_task_id()
    tasks_client = _get_tasks_client()

    logger.info(
        "bradesco webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                task_id=task_id,
                event=sanitized.get("event"),
            )
        },
    )

    try:
        enqueued = tasks_client.enqueue_http(
            task_id=task_id,
            url_path=PROCESS_WEBHOOK_PATH,
            payload={"task_id": task_id, "payload": sanitized, "correlation_id": correlation_id},
            correlation_id=correlation_id,
        )
    except Exception:
        logger.exception(
            "bradesco webhook enqueue failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, task_id=task_id)},
        )
        return JSONResponse(status_code=500, content={"received": False, "error": "enqueue failed"})

    if not enqueued:
        logger.error(
            "bradesco webhook enqueue refused",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, task_id=task_id)},
        )
        return JSONResponse(status_code=500, content={"received": False, "error": "enqueue failed"})

    return JSONResponse(status_code=200, content={"received": True})
