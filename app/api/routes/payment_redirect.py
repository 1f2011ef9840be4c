from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from app.core.config import settings
from app.db.models import PipelineState
from app.payments.controller import PipelineRun, RedirectResolution
from app.payments.effects import RequestContext, is_mobile_context
from app.payments.factory import get_redirect_controller

router = APIRouter(tags=["payments"])
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


def _first_query_values(request: Request) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in request.query_params.multi_items():
        params.setdefault(key, value)
    return params


def _request_context(
    request: Request,
    *,
    source: str | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
    mobile: bool | None = None,
) -> RequestContext:
    user_agent = user_agent or request.headers.get("user-agent")
    if ip_address is None and request.client:
        ip_address = request.client.host
    if mobile is None:
        mobile = is_mobile_context(settings, source=source, user_agent=user_agent)
    return RequestContext(
        user_id=request.headers.get(settings.user_id_header) or None,
        user_agent=user_agent,
        ip_address=ip_address,
        mobile=mobile,
    )


async def _await_run(request: Request, run: PipelineRun) -> RedirectResolution | None:
    """Waits for the run, abandoning it if the client goes away first."""

    async def _watch() -> None:
        while not run.done:
            if await request.is_disconnected():
                run.abandon()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(_watch())
    try:
        return await run.wait()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher


def _resolution_payload(resolution: RedirectResolution, audit_id: int | None) -> dict[str, Any]:
    outcome = resolution.outcome
    event = resolution.event
    navigate = resolution.navigate
    deep_link = resolution.deep_link
    notification = resolution.notification
    payload: dict[str, Any] = {
        "run_id": resolution.run_id,
        "state": outcome.state.value,
        "retryable": outcome.retryable,
        "reason": outcome.reason,
        "message": outcome.message if outcome.state is PipelineState.FAILED else None,
        "invoice_id": event.invoice_id if event else None,
        "payment_type": event.payment_type.value if event else None,
        "actions": list(resolution.actions),
        "notification": (
            {"level": notification.level, "message": notification.message} if notification else None
        ),
        "navigate_to": navigate.url if navigate else None,
        "deep_link": deep_link.render() if deep_link else None,
        "redirect_delay_seconds": (
            navigate.delay_seconds if navigate else settings.payment_success_redirect_delay_seconds
        ),
        "attempts": resolution.attempts,
        "audit_id": audit_id,
    }
    verification = outcome.verification
    if outcome.state is PipelineState.SUCCESS and event and verification:
        payload["payment"] = {
            "invoice_id": event.invoice_id,
            "transaction_id": verification.settled_transaction_id or event.transaction_id,
            "amount": str(verification.settled_amount or event.amount or "") or None,
            "payment_type": event.payment_type.value,
            "metadata": verification.metadata,
        }
    return payload


def _abandoned_response() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/payment-redirect")
async def payment_redirect(request: Request) -> Response:
    params = _first_query_values(request)
    controller = get_redirect_controller()
    run = controller.begin(params, context=_request_context(request, source=params.get("source")))
    resolution = await _await_run(request, run)
    if resolution is None:
        return _abandoned_response()
    # Navigation never waits on the audit write; report the id only if it is already known.
    audit_id = await resolution.wait_for_audit(0)
    return JSONResponse(content=_resolution_payload(resolution, audit_id))


@router.post("/payment-redirect/retry")
async def retry_payment_verification(request: Request) -> Response:
    params = _first_query_values(request)
    controller = get_redirect_controller()
    run = controller.begin(
        params,
        context=_request_context(request, source=params.get("source")),
        manual_retry=True,
    )
    resolution = await _await_run(request, run)
    if resolution is None:
        return _abandoned_response()
    audit_id = await resolution.wait_for_audit(0)
    return JSONResponse(content=_resolution_payload(resolution, audit_id))


@router.post("/functions/payment-redirect-handler")
async def payment_redirect_handler(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning("payment_redirect_handler_invalid_body")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        logger.warning("payment_redirect_handler_invalid_body")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON object expected")

    params = {
        "order_id": payload.get("orderId") or payload.get("order_id"),
        "invoice_id": payload.get("invoice_id"),
        "status": payload.get("type") or payload.get("status"),
        "type": payload.get("paymentType") or payload.get("payment_type"),
        "amount": payload.get("amount"),
        "transaction_id": payload.get("transactionId") or payload.get("transaction_id"),
        "source": payload.get("source"),
    }
    params = {key: str(value) for key, value in params.items() if value is not None}
    context = _request_context(
        request,
        source=params.get("source"),
        user_agent=payload.get("userAgent"),
        ip_address=payload.get("ipAddress"),
        mobile=True,
    )

    resolution = await get_redirect_controller().resolve(params, context=context)
    if resolution is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Redirect handling was abandoned")
    audit_id = await resolution.wait_for_audit(settings.payment_audit_wait_seconds)
    deep_link = resolution.deep_link
    outcome = resolution.outcome
    return {
        "success": outcome.state is PipelineState.SUCCESS,
        "state": outcome.state.value,
        "retryable": outcome.retryable,
        "deepLink": deep_link.render() if deep_link else None,
        "auditId": audit_id,
        "error": outcome.message if outcome.state is PipelineState.FAILED else None,
    }
