"""Tasks client with idempotent enqueue.

Backends, selected via the TASKS_BACKEND env var:
- inline (default): registers HTTP tasks without sending them, runs
  handler tasks immediately (dev/tests)
- http: POSTs tasks to the worker; enqueue_http waits for the response,
  dispatch_http posts from a detached daemon thread
"""

from __future__ import annotations

import os
import threading
from typing import Callable

from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Tracks task_ids so the same task_id is a no-op the second time.
    Enqueueing never raises to the caller; only dispatch_http skips waiting
    on the network.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        if self._backend not in ("inline", "http"):
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")
        self._seen_ids: set[str] = set()
        self._registered: list[dict] = []
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return self._backend

    def _claim(self, task_id: str) -> bool:
        with self._lock:
            if task_id in self._seen_ids:
                return False
            self._seen_ids.add(task_id)
            return True

    def enqueue(
        self,
        task_id: str,
        handler: Callable[[dict], None],
        payload: dict,
    ) -> bool:
        """Run a handler in-process, once per task_id.

        Handler errors are logged, not raised: callers use this for
        best-effort side work.

        Returns:
            True if the task was new, False if task_id was already seen.
        """
        if not self._claim(task_id):
            return False
        try:
            handler(payload)
        except Exception:
            logger.exception(
                "task_handler_failed",
                extra={"extra_fields": safe_log_context(task_id=task_id)},
            )
        return True

    def _release(self, task_id: str) -> None:
        with self._lock:
            self._seen_ids.discard(task_id)

    def _register(self, task: dict) -> None:
        with self._lock:
            self._registered.append(task)

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
    ) -> bool:
        """Deliver a task to the worker endpoint at url_path.

        With the http backend this waits for the worker's 2xx, so callers
        that acknowledge an upstream delivery (webhooks) only do so once the
        task is handed over. A failed delivery frees the task_id for the
        next attempt.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g. "/tasks/paystack/verify").
            payload: Task data (must not contain PII).
            correlation_id: Optional correlation ID for tracing.

        Returns:
            True if the task was delivered (or registered inline).
            False if task_id was already seen or delivery failed.
        """
        if not self._claim(task_id):
            return False

        if self._backend == "inline":
            self._register(_task(task_id, url_path, payload, correlation_id))
            return True

        from vilo.tasks.http_backend import post_task

        if post_task(task_id, url_path, payload, correlation_id):
            return True
        self._release(task_id)
        return False

    def dispatch_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
    ) -> bool:
        """Fire-and-forget variant of enqueue_http.

        With the http backend the POST happens in a daemon thread and this
        returns as soon as the thread is started; the outcome is only logged.

        Returns:
            True if the task was new, False if task_id was already seen.
        """
        if not self._claim(task_id):
            return False

        if self._backend == "inline":
            self._register(_task(task_id, url_path, payload, correlation_id))
            return True

        from vilo.tasks.http_backend import post_task

        thread = threading.Thread(
            target=post_task,
            args=(task_id, url_path, payload, correlation_id),
            name=f"task-{task_id}",
            daemon=True,
        )
        thread.start()
        return True

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._seen_ids

    def get_registered_tasks(self) -> list[dict]:
        """Tasks registered by the inline backend (useful for testing)."""
        with self._lock:
            return list(self._registered)

    def clear(self) -> None:
        with self._lock:
            self._seen_ids.clear()
            self._registered.clear()


def _task(task_id: str, url_path: str, payload: dict, correlation_id: str | None) -> dict:
    return {
        "task_id": task_id,
        "url_path": url_path,
        "payload": payload,
        "correlation_id": correlation_id,
    }
