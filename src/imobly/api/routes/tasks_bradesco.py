"""Worker routes for Bradesco boleto tasks.

Error mapping:
- transport / malformed bank answers -> 500 (queue retries)
- bank rejection -> 200 with ok=false (retrying would not help)
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from imobly.api.task_auth import verify_task_auth
from imobly.bradesco.errors import BradescoError, BradescoRejectionError
from imobly.bradesco.factory import build_gateway
from imobly.jobs.process_webhook import BradescoWebhookProcessor
from imobly.jobs.sync_pending import DEFAULT_BATCH_SIZE, SyncPendingBoletosJob
from imobly.observability.correlation import get_correlation_id
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/bradesco", tags=["tasks"])

logger = get_logger(__name__)


class ProcessWebhookTask(BaseModel):
    task_id: str = ""
    payload: dict[str, Any]
    correlation_id: str | None = None


class SyncPendingTask(BaseModel):
    model_config = ConfigDict(extra="ignore")

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, le=500)


def _get_processor() -> BradescoWebhookProcessor:
    """Build the processor from the environment (patched in tests)."""
    return BradescoWebhookProcessor(build_gateway())


def _get_sync_job() -> SyncPendingBoletosJob:
    return SyncPendingBoletosJob(build_gateway())


def _require_task_auth(request: Request, correlation_id: str) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/process-webhook")
async def process_webhook(request: Request) -> JSONResponse:
    """Apply one enqueued webhook notification.

    Expected payload:
    - task_id: Task identifier
    - payload: Sanitized webhook body (required, object)
    - correlation_id: Optional correlation ID
    """
    correlation_id = get_correlation_id()
    _require_task_auth(request, correlation_id)

    body = await _read_json(request)
    try:
        task = ProcessWebhookTask.model_validate(body)
    except ValidationError:
        logger.warning(
            "invalid process-webhook task",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid payload"})

    try:
        boleto = _get_processor().handle(task.payload)
    except BradescoRejectionError as e:
        logger.warning(
            "bank rejected boleto query",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=task.correlation_id or correlation_id,
                    task_id=task.task_id,
                    status_code=e.status_code,
                    bank_message=e.message,
                )
            },
        )
        return JSONResponse(status_code=200, content={"ok": False, "error": "bank rejected"})
    except BradescoError as e:
        logger.error(
            "bank unavailable while processing webhook",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=task.correlation_id or correlation_id,
                    task_id=task.task_id,
                    error_type=type(e).__name__,
                )
            },
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "bank unavailable"})

    if boleto is None:
        return JSONResponse(status_code=200, content={"ok": True, "result": "unknown_boleto"})

    logger.info(
        "webhook task processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=task.correlation_id or correlation_id,
                task_id=task.task_id,
                fatura_boleto_id=boleto.id,
                status=boleto.status.value,
            )
        },
    )
    return JSONResponse(
        status_code=200,
        content={"ok": True, "result": "processed", "status": boleto.status.value},
    )


@router.post("/sync-pending")
async def sync_pending(request: Request) -> JSONResponse:
    """Run the reconciliation job (scheduled every 6 hours).

    Expected payload (optional): {"batch_size": 1..500}
    """
    correlation_id = get_correlation_id()
    _require_task_auth(request, correlation_id)

    body = await _read_json(request)
    try:
        task = SyncPendingTask.model_validate(body or {})
    except ValidationError:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid payload"})

    summary = _get_sync_job().run(batch_size=task.batch_size)
    return JSONResponse(status_code=200, content={"ok": True, **summary.as_dict()})
