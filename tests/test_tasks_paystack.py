"""Tests for the Paystack verify worker task."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from vilo.api.deps import get_orchestrator
from vilo.api.factory import create_app
from vilo.domain.booking_lifecycle import BookingLifecycleOrchestrator
from vilo.domain.models import BookingStatus

from fakes import FakeGateway, InMemoryBookingStore, payable_session


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(store, gateway):
    return BookingLifecycleOrchestrator(store, gateway)


@pytest.fixture
def client(orchestrator, monkeypatch):
    monkeypatch.delenv("INTERNAL_TASK_SECRET", raising=False)
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return TestClient(app)


@pytest.fixture
def booking(orchestrator, store):
    created = orchestrator.create_booking(payable_session(), "paystack")
    orchestrator.initiate_payment(created.id)
    return store.get(created.id)


class TestVerifyTask:
    def test_settles_booking(self, client, gateway, store, booking):
        gateway.succeed(booking.payment_reference, booking.total_cents)

        response = client.post("/tasks/paystack/verify", json={"reference": booking.payment_reference})

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "booking_id": booking.id,
            "status": "paid",
            "already_processed": False,
        }
        assert store.get(booking.id).status == BookingStatus.PAID

    def test_redelivery_is_idempotent(self, client, gateway, booking):
        gateway.succeed(booking.payment_reference, booking.total_cents)
        payload = {"reference": booking.payment_reference}

        client.post("/tasks/paystack/verify", json=payload)
        response = client.post("/tasks/paystack/verify", json=payload)

        assert response.json()["already_processed"] is True

    def test_amount_mismatch_fails_booking(self, client, gateway, store, booking):
        gateway.succeed(booking.payment_reference, booking.total_cents - 5000)

        response = client.post("/tasks/paystack/verify", json={"reference": booking.payment_reference})

        assert response.json()["status"] == "payment_failed"
        assert store.get(booking.id).failure_reason == "amount_mismatch"

    def test_unknown_reference_acknowledged(self, client):
        response = client.post("/tasks/paystack/verify", json={"reference": "VILO-NOPE"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "unknown_reference"}

    def test_unexpected_error_returns_500(self):
        broken = MagicMock()
        broken.verify_by_reference.side_effect = RuntimeError("db down")
        app = create_app()
        app.dependency_overrides[get_orchestrator] = lambda: broken

        response = TestClient(app).post("/tasks/paystack/verify", json={"reference": "VILO-X"})

        assert response.status_code == 500

    def test_eft_booking_not_settled_by_webhook(self, client, orchestrator, gateway, store):
        created = orchestrator.create_booking(payable_session(), "eft")
        orchestrator.initiate_payment(created.id, "eft")
        gateway.succeed(created.reference, created.total_cents)

        response = client.post("/tasks/paystack/verify", json={"reference": created.reference})

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert store.get(created.id).status == BookingStatus.PENDING
        assert gateway.verify_calls == []
