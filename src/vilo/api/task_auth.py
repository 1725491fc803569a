"""Shared-secret check for internal task endpoints."""

from __future__ import annotations

import hmac
import os

from fastapi import Header, HTTPException

from vilo.observability.logging import get_logger
from vilo.tasks.http_backend import INTERNAL_TASK_SECRET_HEADER

logger = get_logger(__name__)


def require_task_secret(
    x_internal_task_secret: str | None = Header(None, alias=INTERNAL_TASK_SECRET_HEADER),
) -> None:
    """Reject task calls without the shared secret.

    When INTERNAL_TASK_SECRET is unset (local dev, tests) every call passes.
    """
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    if not expected:
        return
    if not x_internal_task_secret or not hmac.compare_digest(x_internal_task_secret, expected):
        logger.warning("task_auth_rejected")
        raise HTTPException(status_code=401, detail="unauthorized")
