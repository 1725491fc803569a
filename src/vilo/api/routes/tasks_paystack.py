"""Worker task: verify a Paystack transaction delivered by webhook."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from vilo.api.deps import get_orchestrator
from vilo.api.task_auth import require_task_secret
from vilo.domain.booking_lifecycle import BookingLifecycleOrchestrator, BookingNotFoundError
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/paystack", tags=["tasks"])

logger = get_logger(__name__)


class VerifyTaskRequest(BaseModel):
    reference: str


@router.post("/verify", dependencies=[Depends(require_task_secret)])
def verify_task(
    body: VerifyTaskRequest,
    orchestrator: BookingLifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Settle the booking behind a Paystack reference.

    Unknown references return 200 so the queue does not redeliver them.
    """
    try:
        outcome = orchestrator.verify_by_reference(body.reference)
    except BookingNotFoundError:
        logger.warning(
            "paystack_task_unknown_reference",
            extra={"extra_fields": safe_log_context(payment_reference=body.reference)},
        )
        return {"ok": True, "status": "unknown_reference"}
    except Exception:
        logger.exception(
            "paystack_task_failed",
            extra={"extra_fields": safe_log_context(payment_reference=body.reference)},
        )
        raise HTTPException(status_code=500, detail="verification task failed")

    return {
        "ok": True,
        "booking_id": outcome.booking_id,
        "status": outcome.status.value,
        "already_processed": outcome.already_processed,
    }
