"""HTTP backend for tasks - POSTs a task to the API/worker.

Called inline by TasksClient.enqueue_http and from a detached thread by
dispatch_http, so failures are logged and reported as False, never raised.
"""

import os

import requests

from vilo.observability.correlation import CORRELATION_ID_HEADER, correlation_scope
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)

INTERNAL_TASK_SECRET_HEADER = "X-Internal-Task-Secret"


def _base_url() -> str:
    return os.environ.get("API_BASE_URL", "http://localhost:8000").rstrip("/")


def _timeout() -> float:
    return float(os.environ.get("TASKS_HTTP_TIMEOUT", "5"))


def post_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
) -> bool:
    """POST one task. Returns True on a 2xx response, False otherwise."""
    with correlation_scope(correlation_id):
        return _post(task_id, url_path, payload, correlation_id)


def _post(task_id: str, url_path: str, payload: dict, correlation_id: str | None) -> bool:
    url = f"{_base_url()}{url_path}"
    headers = {
        "Content-Type": "application/json",
        CORRELATION_ID_HEADER: correlation_id or "",
        "X-Task-Id": task_id,
    }
    secret = os.environ.get("INTERNAL_TASK_SECRET", "")
    if secret:
        headers[INTERNAL_TASK_SECRET_HEADER] = secret

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=_timeout())
        response.raise_for_status()
    except requests.RequestException as e:
        logger.warning(
            "task_post_failed",
            extra={
                "extra_fields": safe_log_context(
                    task_id=task_id, url_path=url_path, error_type=type(e).__name__
                )
            },
        )
        return False

    logger.info(
        "task_posted",
        extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
    )
    return True
