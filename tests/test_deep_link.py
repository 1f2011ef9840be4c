from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from urllib.parse import parse_qsl, urlsplit

import pytest

from app.db.models import PaymentType, PipelineState
from app.payments.deep_link import build_deep_link
from app.payments.errors import DeepLinkConstructionError
from app.payments.redirect_params import RedirectEvent

FIXED_TS = 1767225600000


def _event(invoice_id: str = "order_test_456", **kwargs) -> RedirectEvent:
    values = {
        "invoice_id": invoice_id,
        "raw_status": "success",
        "payment_type": PaymentType.GENERIC,
        "amount": None,
        "transaction_id": None,
        "received_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
    }
    values.update(kwargs)
    return RedirectEvent(**values)


def test_success_link_matches_mobile_contract() -> None:
    event = _event()
    target = build_deep_link(
        event.payment_type,
        PipelineState.SUCCESS,
        event,
        extra={"amount": Decimal("1500")},
        timestamp_ms=FIXED_TS,
    )

    assert target.render() == (
        "healthythako://payment-success?orderId=order_test_456&status=completed"
        f"&source=web_redirect&timestamp={FIXED_TS}&amount=1500"
    )
    assert str(target) == target.render()


@pytest.mark.parametrize("state", [PipelineState.CANCELLED, PipelineState.FAILED])
def test_non_success_states_use_cancel_path(state: PipelineState) -> None:
    event = _event("test_789", raw_status="cancelled")
    target = build_deep_link(event.payment_type, state, event, timestamp_ms=FIXED_TS)

    assert target.path == "payment-cancel"
    assert dict(target.query_params)["status"] == "cancelled"


def test_optional_fields_follow_required_ones_in_fixed_order() -> None:
    event = _event(
        "trainer_booking_test_123",
        payment_type=PaymentType.TRAINER_BOOKING,
        metadata=MappingProxyType({"userId": "from-metadata", "amount": "100"}),
    )
    target = build_deep_link(
        event.payment_type,
        PipelineState.SUCCESS,
        event,
        extra={"userId": "550e8400-e29b-41d4-a716-446655440000", "amount": None},
        timestamp_ms=FIXED_TS,
    )

    keys = [key for key, _ in target.query_params]
    assert keys == ["orderId", "status", "source", "timestamp", "orderType", "amount", "userId"]
    params = dict(target.query_params)
    assert params["orderType"] == "trainer_booking"
    assert params["amount"] == "100"
    assert params["userId"] == "550e8400-e29b-41d4-a716-446655440000"


def test_output_is_stable_apart_from_timestamp() -> None:
    event = _event(payment_type=PaymentType.GYM_MEMBERSHIP)

    first = build_deep_link(event.payment_type, PipelineState.SUCCESS, event, timestamp_ms=1)
    second = build_deep_link(event.payment_type, PipelineState.SUCCESS, event, timestamp_ms=2)

    def _without_timestamp(url: str) -> list[tuple[str, str]]:
        return [(key, value) for key, value in parse_qsl(urlsplit(url).query) if key != "timestamp"]

    assert first.render() != second.render()
    assert _without_timestamp(first.render()) == _without_timestamp(second.render())
    assert build_deep_link(event.payment_type, PipelineState.SUCCESS, event, timestamp_ms=1) == first


def test_custom_scheme_and_default_timestamp() -> None:
    event = _event()
    target = build_deep_link(event.payment_type, PipelineState.SUCCESS, event, scheme="healthythako-staging")

    rendered = target.render()
    assert rendered.startswith("healthythako-staging://payment-success?orderId=order_test_456")
    assert int(dict(target.query_params)["timestamp"]) > 0


@pytest.mark.parametrize("scheme", ["", "Healthy Thako", "1app", "https://"])
def test_invalid_scheme_is_rejected(scheme: str) -> None:
    event = _event()
    with pytest.raises(DeepLinkConstructionError):
        build_deep_link(event.payment_type, PipelineState.SUCCESS, event, scheme=scheme)


def test_empty_order_id_is_a_programming_error() -> None:
    event = _event("   ")
    with pytest.raises(AssertionError):
        build_deep_link(event.payment_type, PipelineState.SUCCESS, event)
