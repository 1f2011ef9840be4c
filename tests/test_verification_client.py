from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from app.core.config import Settings
from app.db.models import GatewayStatus, PaymentType
from app.payments.errors import VerificationTransportError
from app.payments.verification import VerificationClient, parse_verification_response

VERIFY_URL = "https://platform.example/functions/v1/verify-payment"


def _settings(**overrides) -> Settings:
    values = {
        "supabase_url": "https://platform.example",
        "supabase_anon_key": "anon-key",
    }
    values.update(overrides)
    return Settings(**values)


def _verify(client: VerificationClient, invoice_id: str = "inv-1"):
    return asyncio.run(client.verify(invoice_id, "success", PaymentType.TRAINER_BOOKING, "user-1"))


def test_verify_posts_contract_payload_with_platform_headers() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "status": "COMPLETED",
                "transaction_id": "TX-77",
                "amount": 1500,
                "metadata": {"booking_id": "b-1", "booking_data": {"trainer_id": "t-1"}},
            },
        )

    client = VerificationClient(_settings(), transport=httpx.MockTransport(handler))
    result = _verify(client)

    assert len(captured) == 1
    request = captured[0]
    assert str(request.url) == VERIFY_URL
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer anon-key"
    assert json.loads(request.content) == {
        "invoice_id": "inv-1",
        "status": "success",
        "payment_type": "trainer_booking",
        "user_id": "user-1",
    }
    assert result.verified is True
    assert result.gateway_status is GatewayStatus.COMPLETED
    assert result.is_settled is True
    assert result.settled_amount == Decimal("1500")
    assert result.settled_transaction_id == "TX-77"
    assert result.metadata["booking_id"] == "b-1"
    assert json.loads(result.metadata["booking_data"]) == {"trainer_id": "t-1"}


def test_verify_uses_endpoint_override() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"success": True, "status": "PENDING"})

    client = VerificationClient(
        _settings(verify_payment_url="https://verify.example/check"),
        transport=httpx.MockTransport(handler),
    )
    result = _verify(client)

    assert seen == ["https://verify.example/check"]
    assert result.gateway_status is GatewayStatus.PENDING
    assert result.is_settled is False


def test_verified_but_failed_is_a_result_not_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "status": "FAILED", "error": "Card declined"})

    result = _verify(VerificationClient(_settings(), transport=httpx.MockTransport(handler)))

    assert result.verified is False
    assert result.gateway_status is GatewayStatus.FAILED
    assert result.error == "Card declined"


@pytest.mark.parametrize(
    ("response", "category"),
    [
        (httpx.Response(500, json={"error": "boom"}), "http_error"),
        (httpx.Response(404, text="not found"), "http_error"),
        (httpx.Response(200, text="<html>oops</html>"), "bad_response"),
        (httpx.Response(200, json={"success": True}), "bad_response"),
        (httpx.Response(200, json={"success": True, "status": "SETTLING"}), "bad_response"),
        (httpx.Response(200, json=["COMPLETED"]), "bad_response"),
    ],
)
def test_unusable_responses_raise_transport_error(response: httpx.Response, category: str) -> None:
    client = VerificationClient(_settings(), transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(VerificationTransportError) as exc_info:
        _verify(client)

    assert exc_info.value.retryable is True
    assert exc_info.value.category == category


def test_network_failures_raise_transport_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def time_out(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(VerificationTransportError) as refused:
        _verify(VerificationClient(_settings(), transport=httpx.MockTransport(refuse)))
    with pytest.raises(VerificationTransportError) as timed_out:
        _verify(VerificationClient(_settings(), transport=httpx.MockTransport(time_out)))

    assert refused.value.category == "request_error"
    assert timed_out.value.category == "timeout"


def test_missing_endpoint_raises_without_network_call() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = VerificationClient(Settings(supabase_url=None, verify_payment_url=None), transport=httpx.MockTransport(handler))

    with pytest.raises(VerificationTransportError) as exc_info:
        _verify(client)

    assert exc_info.value.category == "missing_endpoint"
    assert calls == []


def test_verification_log_carries_only_identifiers(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"success": True, "status": "COMPLETED", "amount": "990.00", "metadata": {"card_last4": "4242"}},
        )

    with caplog.at_level("INFO", logger="app.payments.verification"):
        _verify(VerificationClient(_settings(), transport=httpx.MockTransport(handler)))

    records = [record for record in caplog.records if record.getMessage() == "payment_verification_result"]
    assert len(records) == 1
    assert records[0].invoice_id == "inv-1"
    assert records[0].gateway_status == "COMPLETED"
    assert not hasattr(records[0], "metadata")


def test_parse_verification_response_accepts_canceled_spelling() -> None:
    result = parse_verification_response({"success": True, "status": "canceled"})

    assert result is not None
    assert result.gateway_status is GatewayStatus.CANCELLED


def test_success_must_be_literal_true() -> None:
    result = parse_verification_response({"success": "true", "status": "COMPLETED"})

    assert result is not None
    assert result.verified is False
    assert result.is_settled is False
