"""Dependency providers for routes.

Each provider builds its collaborator once per process. Tests replace them
through app.dependency_overrides.
"""

from __future__ import annotations

from functools import lru_cache

from vilo.domain.booking_lifecycle import BookingLifecycleOrchestrator
from vilo.domain.retry import RetryResolver
from vilo.infra.repositories.bookings_repository import PostgresBookingStore
from vilo.infra.repositories.coupons_repository import PostgresCouponStore
from vilo.infra.repositories.rates_repository import (
    PostgresAddonCatalog,
    PostgresAvailabilityCheck,
    PostgresRateLookup,
    PostgresRoomCatalog,
)
from vilo.infra.settings import load_eft_config, load_engine_settings, load_paystack_config
from vilo.paystack.client import PaystackClient
from vilo.paystack.gateway import PaystackGateway
from vilo.tasks.client import TasksClient


@lru_cache(maxsize=1)
def get_tasks_client() -> TasksClient:
    return TasksClient()


@lru_cache(maxsize=1)
def get_orchestrator() -> BookingLifecycleOrchestrator:
    return BookingLifecycleOrchestrator(
        PostgresBookingStore(),
        PaystackGateway(PaystackClient(load_paystack_config())),
        coupons=PostgresCouponStore(),
        tasks_client=get_tasks_client(),
        settings=load_engine_settings(),
        eft=load_eft_config(),
    )


@lru_cache(maxsize=1)
def get_retry_resolver() -> RetryResolver:
    return RetryResolver(
        PostgresBookingStore(),
        rooms=PostgresRoomCatalog(),
        addons=PostgresAddonCatalog(),
        rates=PostgresRateLookup(),
        availability=PostgresAvailabilityCheck(),
        coupons=PostgresCouponStore(),
        settings=load_engine_settings(),
    )


def get_webhook_secret() -> str:
    """Paystack signs webhooks with the secret key of the active mode.

    Raises:
        RuntimeError: If no secret is configured.
    """
    config = load_paystack_config()
    secret = config.webhook_secret or config.secret_key
    if not secret:
        raise RuntimeError("Paystack webhook secret not configured")
    return secret
