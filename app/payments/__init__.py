from app.payments.audit import AuditLogEntry, AuditRecorder
from app.payments.controller import (
    InvoiceVerificationGate,
    PipelineRun,
    RedirectController,
    RedirectResolution,
)
from app.payments.deep_link import DeepLinkTarget, build_deep_link
from app.payments.outcome import Outcome, classify
from app.payments.redirect_params import RedirectEvent, parse_redirect_params, parse_redirect_url
from app.payments.verification import VerificationClient, VerificationResult

__all__ = [
    "AuditLogEntry",
    "AuditRecorder",
    "DeepLinkTarget",
    "InvoiceVerificationGate",
    "Outcome",
    "PipelineRun",
    "RedirectController",
    "RedirectEvent",
    "RedirectResolution",
    "VerificationClient",
    "VerificationResult",
    "build_deep_link",
    "classify",
    "parse_redirect_params",
    "parse_redirect_url",
]
