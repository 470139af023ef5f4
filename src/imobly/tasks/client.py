"""Tasks client with idempotent enqueue.

Backends selectable via TASKS_BACKEND env var:
- inline (default): records the task without executing it (dev/tests)
- http: sends tasks to the worker via HTTP POST
- cloud_tasks: sends tasks to Google Cloud Tasks
"""

import os
from datetime import datetime


TASKS_BACKEND = os.environ.get("TASKS_BACKEND", "inline")


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    A task_id seen before is a no-op. Payloads must not carry raw PII:
    bank notifications are sanitized before they get here.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._seen_ids: set[str] = set()
        self._recorded: list[dict] = []
        self._backend = backend or TASKS_BACKEND

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue a task for the worker endpoint url_path.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g. "/tasks/bradesco/process-webhook").
            payload: Task data (no raw PII).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if the task was accepted by the backend.
            False if task_id was already seen or the backend refused it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._seen_ids:
            return False

        if self._backend == "inline":
            self._seen_ids.add(task_id)
            self._recorded.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        if self._backend == "http":
            from imobly.tasks.http_backend import enqueue_http
            accepted = enqueue_http(task_id, url_path, payload, correlation_id, schedule_time)
        elif self._backend == "cloud_tasks":
            from imobly.tasks.cloud_tasks_backend import enqueue_cloud_task
            accepted = enqueue_cloud_task(task_id, url_path, payload, correlation_id, schedule_time)
        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

        if accepted:
            self._seen_ids.add(task_id)
        return accepted

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks recorded by the inline backend (useful for testing)."""
        return list(self._recorded)

    def clear(self) -> None:
        self._seen_ids.clear()
        self._recorded.clear()
