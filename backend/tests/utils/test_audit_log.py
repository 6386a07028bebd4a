import json
from typing import Any, List

import pytest
from singbox.models import DepositStatus, ReservationStatus
from singbox.utils import audit_log
from singbox.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="reservation.created",
        initiator="customer",
        reservation_id=1,
        box_id=2,
        user_id=None,
        status_to=ReservationStatus.CONFIRMED,
        payment_reference="pi_123",
    )
    set_request_id(None)
    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "reservation.created"
    assert payload["initiator"] == "customer"
    assert payload["request_id"] == "req-123"
    assert payload["status_to"] == "confirmed"
    assert payload["box_id"] == 2
    assert payload["payment_reference"] == "pi_123"
    assert "user_id" not in payload
    assert "timestamp" in payload


def test_emit_audit_log_merges_extra(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    audit_log.emit_audit_log(
        action="deposit.captured",
        initiator="staff",
        reservation_id=7,
        box_id=1,
        user_id=3,
        status_from=DepositStatus.AUTHORIZED,
        status_to=DepositStatus.CAPTURED,
        extra={"amount_cents": 2000},
    )
    payload = json.loads(messages[0])
    assert payload["status_from"] == "authorized"
    assert payload["status_to"] == "captured"
    assert payload["amount_cents"] == 2000


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="deposit.canceled",
            initiator="staff",
            reservation_id=1,
            box_id=2,
            user_id=4,
            status_from=DepositStatus.AUTHORIZED,
            status_to=DepositStatus.CANCELED,
        )
