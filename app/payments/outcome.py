from __future__ import annotations

from dataclasses import dataclass

from app.db.models import GatewayStatus, PipelineState
from app.payments.errors import MissingInvoiceIdError, VerificationTransportError
from app.payments.redirect_params import RedirectEvent
from app.payments.verification import VerificationResult

REASON_CANCELLED = "payment_cancelled"
REASON_MISSING_INVOICE_ID = "missing_invoice_id"
REASON_VERIFICATION_UNAVAILABLE = "verification_unavailable"
REASON_PAYMENT_REJECTED = "payment_rejected"
REASON_PENDING_TIMEOUT = "payment_pending_timeout"

_REJECTED_STATUSES = {GatewayStatus.FAILED, GatewayStatus.CANCELLED}


@dataclass(frozen=True)
class Outcome:
    state: PipelineState
    retryable: bool = False
    reason: str | None = None
    message: str | None = None
    verification: VerificationResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


def classify(
    event: RedirectEvent,
    verification: VerificationResult | VerificationTransportError | None,
    *,
    budget_exhausted: bool = False,
) -> Outcome:
    if verification is None:
        if event.is_cancellation:
            return Outcome(PipelineState.CANCELLED, reason=REASON_CANCELLED)
        return Outcome(PipelineState.VERIFYING)

    if isinstance(verification, VerificationTransportError):
        return Outcome(
            PipelineState.FAILED,
            retryable=True,
            reason=REASON_VERIFICATION_UNAVAILABLE,
            message=f"Payment verification failed: {verification}",
        )

    if not verification.verified or verification.gateway_status in _REJECTED_STATUSES:
        return Outcome(
            PipelineState.FAILED,
            retryable=False,
            reason=REASON_PAYMENT_REJECTED,
            message=verification.error
            or f"Payment verification failed. Status: {verification.gateway_status.value}",
            verification=verification,
        )

    if verification.gateway_status is GatewayStatus.PENDING:
        if budget_exhausted:
            return Outcome(
                PipelineState.FAILED,
                retryable=True,
                reason=REASON_PENDING_TIMEOUT,
                message="Payment is still being processed. Please retry verification in a moment.",
                verification=verification,
            )
        return Outcome(PipelineState.VERIFYING, verification=verification)

    return Outcome(PipelineState.SUCCESS, verification=verification)


def classify_parse_failure(exc: MissingInvoiceIdError) -> Outcome:
    return Outcome(
        PipelineState.FAILED,
        retryable=False,
        reason=REASON_MISSING_INVOICE_ID,
        message=str(exc),
    )
