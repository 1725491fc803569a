"""Tests for observability utilities."""

import json
import logging

from vilo.observability.correlation import correlation_scope, get_correlation_id
from vilo.observability.logging import JsonFormatter
from vilo.observability.redaction import (
    mask_email,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +27 82 555 1234")
        assert "555" not in result
        assert "[REDACTED]" in result

    def test_email_masked(self):
        assert redact_string("Email: thandi@example.com") == "Email: t***@example.com"

    def test_mask_email_without_local_part(self):
        assert mask_email("@example.com") == "[REDACTED]"

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"password": "secret123", "user": "john"})
        assert "secret123" not in result
        assert "john" not in result
        assert "password" in result

    def test_redact_value_list_only_len(self):
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_safe_log_context(self):
        ctx = safe_log_context(guest_phone="+27825551234", count=42, ok=True)
        assert "[REDACTED]" in ctx["guest_phone"]
        assert ctx["count"] == "42"
        assert ctx["ok"] == "true"

    def test_secrets_dropped(self):
        ctx = safe_log_context(secret_key="sk_live_123", x_paystack_signature="abc", account_number="62000000001")
        assert set(ctx.values()) == {"[REDACTED]"}

    def test_identifiers_kept(self):
        ctx = safe_log_context(booking_id="12345678901", payment_reference="VILO-7KQX-R1")
        assert ctx == {"booking_id": "12345678901", "payment_reference": "VILO-7KQX-R1"}


class TestCorrelation:
    def test_scope_binds_and_resets(self):
        assert get_correlation_id() == ""
        with correlation_scope("corr-1") as cid:
            assert cid == "corr-1"
            assert get_correlation_id() == "corr-1"
        assert get_correlation_id() == ""

    def test_scope_generates_id(self):
        with correlation_scope() as cid:
            assert len(cid) == 36


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("vilo.test", logging.INFO, __file__, 1, "booking_created", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_formats_event_and_extra_fields(self):
        line = JsonFormatter().format(self._record(extra_fields={"booking_id": "b-1"}))
        data = json.loads(line)
        assert data["event"] == "booking_created"
        assert data["level"] == "INFO"
        assert data["service"] == "vilo-booking-engine"
        assert data["booking_id"] == "b-1"
        assert "correlationId" not in data

    def test_includes_correlation_id(self):
        with correlation_scope("corr-9"):
            data = json.loads(JsonFormatter().format(self._record()))
        assert data["correlationId"] == "corr-9"
