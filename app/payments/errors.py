from __future__ import annotations


class PaymentRedirectError(ValueError):
    """Base error for the payment redirect pipeline."""

    event_code = "payment_redirect_error"
    retryable = False


class MissingInvoiceIdError(PaymentRedirectError):
    event_code = "payment_redirect_missing_invoice_id"

    def __init__(self, message: str = "Missing payment invoice ID") -> None:
        super().__init__(message)


class VerificationTransportError(RuntimeError):
    """The verification service could not be reached or answered unintelligibly.

    Distinct from a payment the gateway confirmed as failed: this one may be
    retried.
    """

    event_code = "payment_verification_unavailable"
    retryable = True

    def __init__(self, message: str, *, status_code: int | None = None, category: str = "unknown") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.category = category


class AuditWriteError(RuntimeError):
    event_code = "payment_redirect_audit_failed"


class DeepLinkConstructionError(AssertionError):
    event_code = "payment_deep_link_invalid"


class InvalidTransitionError(RuntimeError):
    event_code = "payment_pipeline_invalid_transition"
