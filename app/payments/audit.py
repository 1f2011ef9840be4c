from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.db.models import PaymentRedirectAudit, PipelineState
from app.db.session import get_session
from app.payments.errors import AuditWriteError
from app.payments.redirect_params import RedirectEvent
from app.payments.verification import VerificationResult

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class AuditLogEntry:
    # None when the redirect could not be parsed (no invoice id).
    redirect_event: RedirectEvent | None
    verification: VerificationResult | None
    resolved_state: PipelineState
    retryable: bool = False
    failure_reason: str | None = None
    error_detail: str | None = None
    user_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    deep_link: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def invoice_id(self) -> str | None:
        return self.redirect_event.invoice_id if self.redirect_event else None


class AuditRecorder:
    """Append-only writer for payment redirect events.

    Failures never reach the caller: they are logged and `record` returns
    None, so the pipeline state is unaffected by the audit trail.
    """

    def __init__(self, settings: Settings, *, session_factory: SessionFactory | None = None) -> None:
        self._settings = settings
        self._session_factory = session_factory or get_session

    async def record(self, entry: AuditLogEntry) -> int | None:
        try:
            audit_id = await asyncio.to_thread(self._insert, entry)
        except AuditWriteError as exc:
            logger.warning(
                AuditWriteError.event_code,
                extra={
                    "invoice_id": entry.invoice_id,
                    "resolved_state": entry.resolved_state.value,
                    "error": str(exc),
                },
            )
            return None
        except Exception:  # noqa: BLE001
            logger.exception("payment_redirect_audit_unexpected_error", extra={"invoice_id": entry.invoice_id})
            return None
        logger.info(
            "payment_redirect_audited",
            extra={
                "audit_id": audit_id,
                "invoice_id": entry.invoice_id,
                "resolved_state": entry.resolved_state.value,
            },
        )
        return audit_id

    def _insert(self, entry: AuditLogEntry) -> int:
        row = _to_row(entry, environment=self._settings.env)
        try:
            with self._session_factory() as session:
                session.add(row)
                session.flush()
                audit_id = row.id
        except (SQLAlchemyError, RuntimeError) as exc:
            raise AuditWriteError(f"{exc.__class__.__name__}: {exc}") from exc
        return audit_id


def _to_row(entry: AuditLogEntry, *, environment: str | None) -> PaymentRedirectAudit:
    event = entry.redirect_event
    verification = entry.verification
    row = PaymentRedirectAudit(
        invoice_id=entry.invoice_id,
        received_at=entry.created_at,
        resolved_state=entry.resolved_state,
        retryable=entry.retryable,
        failure_reason=entry.failure_reason,
        error_detail=entry.error_detail,
        user_id=entry.user_id,
        user_agent=entry.user_agent[:512] if entry.user_agent else None,
        ip_address=entry.ip_address,
        deep_link=entry.deep_link,
        is_synthetic=False,
        environment=environment,
        created_at=entry.created_at,
    )
    if event is not None:
        row.payment_type = event.payment_type
        row.raw_status = event.raw_status
        row.source = event.source
        row.advisory_amount = event.amount
        row.advisory_transaction_id = event.transaction_id
        row.received_at = event.received_at
        row.is_synthetic = event.is_synthetic
    if verification is not None:
        row.verified = verification.verified
        row.gateway_status = verification.gateway_status
        row.settled_amount = verification.settled_amount
        row.settled_transaction_id = verification.settled_transaction_id
        row.verification_metadata = dict(verification.metadata) or None
    return row
