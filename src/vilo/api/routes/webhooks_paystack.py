"""Paystack webhook routes - public endpoint for Paystack events.

Security rules:
- Validate x-paystack-signature on every request.
- Never log payload or signature header.
- Return 5xx if enqueue fails (so Paystack retries).
- No business logic here - just receipt + enqueue. Verification happens in
  the task handler, which re-checks the transaction with Paystack.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.concurrency import run_in_threadpool

from vilo.api.deps import get_tasks_client, get_webhook_secret
from vilo.infra.db import txn
from vilo.infra.repositories.processed_events_repository import record_event
from vilo.observability.correlation import get_correlation_id
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context
from vilo.paystack.webhook import (
    SIGNATURE_HEADER,
    InvalidPayloadError,
    InvalidSignatureError,
    PaystackWebhookEvent,
    verify_and_extract,
)
from vilo.tasks.client import TasksClient

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

# Only these events can settle a booking
HANDLED_EVENTS = frozenset({"charge.success"})

VERIFY_TASK_PATH = "/tasks/paystack/verify"


class EnqueueFailedError(Exception):
    """Verify task could not be handed to the tasks backend."""


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    tasks_client: TasksClient = Depends(get_tasks_client),
) -> Response:
    """Receive Paystack webhook events.

    ACK 2xx only if:
    1. Signature validated
    2. Receipt inserted in processed_events
    3. Verify task enqueued

    Returns:
        200 OK if processed, duplicate or ignored.
        400 Bad Request if signature or payload invalid.
        500 Internal Server Error if not configured or enqueue fails.
    """
    correlation_id = get_correlation_id()
    payload_bytes = await request.body()

    try:
        secret = get_webhook_secret()
    except RuntimeError:
        logger.error("paystack_webhook_secret_missing")
        return Response(status_code=500, content="server configuration error")

    try:
        event = verify_and_extract(payload_bytes, signature, secret)
    except InvalidSignatureError:
        logger.warning("paystack_webhook_invalid_signature")
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        logger.warning("paystack_webhook_invalid_payload")
        return Response(status_code=400, content="invalid payload")

    logger.info(
        "paystack_webhook_received",
        extra={
            "extra_fields": safe_log_context(
                event_type=event.event_type, payment_reference=event.reference
            )
        },
    )

    if event.event_type not in HANDLED_EVENTS:
        return Response(status_code=200, content="ignored")

    try:
        outcome = await run_in_threadpool(
            _record_and_enqueue, event, tasks_client, correlation_id or None
        )
    except EnqueueFailedError:
        logger.error(
            "paystack_webhook_enqueue_failed",
            extra={"extra_fields": safe_log_context(payment_reference=event.reference)},
        )
        return Response(status_code=500, content="enqueue failed")

    return Response(status_code=200, content=outcome)


def _record_and_enqueue(
    event: PaystackWebhookEvent,
    tasks_client: TasksClient,
    correlation_id: str | None,
) -> str:
    """Insert the receipt and hand the verify task over, in one transaction.

    Runs in the threadpool: with the http backend the enqueue waits on the
    worker's response.

    Raises:
        EnqueueFailedError: If the task was not delivered. The receipt is
            rolled back so a redelivery is processed.
    """
    with txn() as cur:
        is_new = record_event(
            cur, source=f"paystack:{event.event_type}", external_id=event.event_id
        )
        if not is_new:
            logger.info(
                "paystack_webhook_duplicate",
                extra={"extra_fields": safe_log_context(payment_reference=event.reference)},
            )
            return "duplicate"

        enqueued = tasks_client.enqueue_http(
            task_id=f"paystack:{event.event_id}",
            url_path=VERIFY_TASK_PATH,
            payload={"reference": event.reference},
            correlation_id=correlation_id,
        )
        if not enqueued:
            raise EnqueueFailedError(event.event_id)
    return "ok"
