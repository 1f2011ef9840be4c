from __future__ import annotations

from functools import lru_cache

from app.core.config import settings
from app.payments.audit import AuditRecorder
from app.payments.checkout import CheckoutClient
from app.payments.controller import RedirectController
from app.payments.verification import VerificationClient


@lru_cache(maxsize=1)
def get_redirect_controller() -> RedirectController:
    # One controller per process so the per-invoice gate is shared by all requests.
    return RedirectController(
        settings,
        verifier=VerificationClient(settings),
        recorder=AuditRecorder(settings),
    )


def get_checkout_client() -> CheckoutClient:
    return CheckoutClient(settings)
