from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union
from urllib.parse import urlencode

from app.core.config import Settings
from app.db.models import PaymentType, PipelineState
from app.payments.audit import AuditLogEntry
from app.payments.deep_link import DeepLinkTarget, build_deep_link
from app.payments.outcome import Outcome
from app.payments.redirect_params import RedirectEvent

ACTION_RETRY_VERIFICATION = "retry_verification"
ACTION_TRY_PAYMENT_AGAIN = "try_payment_again"
ACTION_CONTACT_SUPPORT = "contact_support"
ACTION_TRY_AGAIN = "try_again"
ACTION_VIEW_ORDER = "view_order_details"
ACTION_GO_HOME = "go_home"


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    mobile: bool = False


@dataclass(frozen=True)
class RecordAudit:
    entry: AuditLogEntry


@dataclass(frozen=True)
class Notify:
    level: Literal["success", "info", "error"]
    message: str


@dataclass(frozen=True)
class OfferActions:
    actions: tuple[str, ...]


@dataclass(frozen=True)
class Navigate:
    url: str
    delay_seconds: float


@dataclass(frozen=True)
class OpenDeepLink:
    target: DeepLinkTarget
    delay_seconds: float


Command = Union[RecordAudit, Notify, OfferActions, Navigate, OpenDeepLink]


def is_mobile_context(settings: Settings, *, source: str | None, user_agent: str | None) -> bool:
    if source == "mobile_app":
        return True
    marker = settings.mobile_user_agent_marker
    return bool(marker and user_agent and marker in user_agent)


def success_navigation_url(settings: Settings, event: RedirectEvent, outcome: Outcome) -> str:
    verification = outcome.verification
    params: dict[str, str] = {
        "verified": "true",
        "type": event.payment_type.value if event.payment_type is not PaymentType.GENERIC else "general",
        "invoice_id": event.invoice_id,
    }
    booking_id = verification.metadata.get("booking_id") if verification else None
    if booking_id:
        params["booking_id"] = booking_id
    if verification and verification.settled_transaction_id:
        params["transaction_id"] = verification.settled_transaction_id
    amount = _display_amount(event, outcome)
    if amount:
        params["amount"] = amount
    return f"{settings.payment_success_path}?{urlencode(params)}"


def plan_effects(
    outcome: Outcome,
    event: RedirectEvent | None,
    *,
    settings: Settings,
    context: RequestContext,
    timestamp_ms: int | None = None,
) -> list[Command]:
    """Turns a terminal outcome into the ordered commands the host executes."""
    if not outcome.is_terminal:
        return []

    deep_link: DeepLinkTarget | None = None
    if context.mobile and event is not None:
        deep_link = build_deep_link(
            event.payment_type,
            outcome.state,
            event,
            scheme=settings.mobile_app_scheme,
            extra={"amount": _display_amount(event, outcome), "userId": context.user_id},
            timestamp_ms=timestamp_ms,
        )

    commands: list[Command] = [
        RecordAudit(
            AuditLogEntry(
                redirect_event=event,
                verification=outcome.verification,
                resolved_state=outcome.state,
                retryable=outcome.retryable,
                failure_reason=outcome.reason,
                error_detail=outcome.message if outcome.state is PipelineState.FAILED else None,
                user_id=context.user_id,
                user_agent=context.user_agent,
                ip_address=context.ip_address,
                deep_link=deep_link.render() if deep_link else None,
            )
        )
    ]

    delay = settings.payment_success_redirect_delay_seconds
    if outcome.state is PipelineState.SUCCESS:
        commands.append(Notify("success", "Payment verified successfully!"))
        commands.append(OfferActions((ACTION_VIEW_ORDER, ACTION_GO_HOME)))
        if deep_link is not None:
            commands.append(OpenDeepLink(deep_link, delay))
        else:
            commands.append(Navigate(success_navigation_url(settings, event, outcome), delay))
        return commands

    if outcome.state is PipelineState.CANCELLED:
        commands.append(Notify("error", "Payment was cancelled"))
        commands.append(OfferActions((ACTION_TRY_AGAIN, ACTION_GO_HOME)))
    else:
        commands.append(Notify("error", f"Payment processing failed: {outcome.message}"))
        actions = (ACTION_TRY_PAYMENT_AGAIN, ACTION_CONTACT_SUPPORT)
        if outcome.retryable:
            actions = (ACTION_RETRY_VERIFICATION,) + actions
        commands.append(OfferActions(actions))
    if deep_link is not None:
        commands.append(OpenDeepLink(deep_link, delay))
    return commands


def _display_amount(event: RedirectEvent, outcome: Outcome) -> str | None:
    verification = outcome.verification
    if verification and verification.settled_amount is not None:
        return str(verification.settled_amount)
    if event.amount is not None:
        return str(event.amount)
    return None
