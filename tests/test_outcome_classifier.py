from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.db.models import GatewayStatus, PaymentType, PipelineState
from app.payments.errors import MissingInvoiceIdError, VerificationTransportError
from app.payments.outcome import (
    REASON_CANCELLED,
    REASON_MISSING_INVOICE_ID,
    REASON_PAYMENT_REJECTED,
    REASON_PENDING_TIMEOUT,
    REASON_VERIFICATION_UNAVAILABLE,
    classify,
    classify_parse_failure,
)
from app.payments.redirect_params import RedirectEvent
from app.payments.verification import VerificationResult


def _event(raw_status: str | None = "success") -> RedirectEvent:
    return RedirectEvent(
        invoice_id="inv-1",
        raw_status=raw_status,
        payment_type=PaymentType.TRAINER_BOOKING,
        amount=None,
        transaction_id=None,
        received_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


def _result(verified: bool, status: GatewayStatus, error: str | None = None) -> VerificationResult:
    return VerificationResult(verified=verified, gateway_status=status, error=error)


def test_cancellation_without_verification_short_circuits() -> None:
    outcome = classify(_event("cancelled"), None)

    assert outcome.state is PipelineState.CANCELLED
    assert outcome.retryable is False
    assert outcome.reason == REASON_CANCELLED
    assert outcome.message is None


def test_no_attempt_and_no_cancellation_keeps_verifying() -> None:
    outcome = classify(_event("success"), None)

    assert outcome.state is PipelineState.VERIFYING
    assert outcome.is_terminal is False


def test_transport_error_is_retryable_failure() -> None:
    outcome = classify(_event(), VerificationTransportError("Payment verification timed out", category="timeout"))

    assert outcome.state is PipelineState.FAILED
    assert outcome.retryable is True
    assert outcome.reason == REASON_VERIFICATION_UNAVAILABLE
    assert outcome.message == "Payment verification failed: Payment verification timed out"


@pytest.mark.parametrize(
    ("verified", "status"),
    [
        (False, GatewayStatus.COMPLETED),
        (False, GatewayStatus.PENDING),
        (True, GatewayStatus.FAILED),
        (True, GatewayStatus.CANCELLED),
        (False, GatewayStatus.FAILED),
    ],
)
def test_rejected_verification_is_final_failure(verified: bool, status: GatewayStatus) -> None:
    outcome = classify(_event(), _result(verified, status))

    assert outcome.state is PipelineState.FAILED
    assert outcome.retryable is False
    assert outcome.reason == REASON_PAYMENT_REJECTED
    assert outcome.message == f"Payment verification failed. Status: {status.value}"


def test_rejected_verification_prefers_backend_error_text() -> None:
    outcome = classify(_event(), _result(False, GatewayStatus.FAILED, error="Insufficient funds"))
    assert outcome.message == "Insufficient funds"


def test_pending_keeps_verifying_until_budget_exhausted() -> None:
    pending = _result(True, GatewayStatus.PENDING)

    assert classify(_event(), pending).state is PipelineState.VERIFYING

    exhausted = classify(_event(), pending, budget_exhausted=True)
    assert exhausted.state is PipelineState.FAILED
    assert exhausted.retryable is True
    assert exhausted.reason == REASON_PENDING_TIMEOUT


def test_verified_completed_is_success() -> None:
    outcome = classify(_event(), _result(True, GatewayStatus.COMPLETED))

    assert outcome.state is PipelineState.SUCCESS
    assert outcome.verification is not None
    assert outcome.verification.is_settled is True


@pytest.mark.parametrize("raw_status", ["success", "SUCCESS", "completed", None])
@pytest.mark.parametrize(
    "verification",
    [
        None,
        VerificationResult(verified=False, gateway_status=GatewayStatus.COMPLETED),
        VerificationResult(verified=True, gateway_status=GatewayStatus.PENDING),
        VerificationTransportError("unreachable"),
    ],
)
def test_raw_success_never_yields_success_without_settled_verification(raw_status, verification) -> None:
    for budget_exhausted in (False, True):
        outcome = classify(_event(raw_status), verification, budget_exhausted=budget_exhausted)
        assert outcome.state is not PipelineState.SUCCESS


def test_cancellation_token_does_not_override_completed_verification() -> None:
    outcome = classify(_event("cancelled"), _result(True, GatewayStatus.COMPLETED))
    assert outcome.state is PipelineState.SUCCESS


def test_parse_failure_is_final_failure() -> None:
    outcome = classify_parse_failure(MissingInvoiceIdError())

    assert outcome.state is PipelineState.FAILED
    assert outcome.retryable is False
    assert outcome.reason == REASON_MISSING_INVOICE_ID
    assert outcome.message == "Missing payment invoice ID"
