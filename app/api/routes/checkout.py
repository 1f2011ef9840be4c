from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from app.core.config import settings
from app.payments.checkout import build_checkout_request
from app.payments.effects import is_mobile_context
from app.payments.factory import get_checkout_client
from app.payments.redirect_params import normalize_payment_type

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)


def _parse_amount(value: object) -> Decimal:
    if value is None or isinstance(value, bool):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="amount is required")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="amount must be a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="amount must be positive")
    return amount


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@router.post("/checkout")
async def create_checkout(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON object expected")

    details = payload.get("details") or {}
    if not isinstance(details, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="details must be an object")

    payment_type = normalize_payment_type(_optional_str(payload.get("payment_type")))
    checkout_request = build_checkout_request(
        payment_type,
        _parse_amount(payload.get("amount")),
        details,
        customer_email=_optional_str(payload.get("customer_email")),
        customer_name=_optional_str(payload.get("customer_name")),
        booking_id=_optional_str(payload.get("booking_id")),
    )

    user_agent = request.headers.get("user-agent")
    mobile = payload.get("is_mobile_app") is True or is_mobile_context(
        settings,
        source=_optional_str(payload.get("source")),
        user_agent=user_agent,
    )
    session = await get_checkout_client().create_payment(
        checkout_request,
        mobile=mobile,
        user_agent=user_agent,
    )
    if session is None:
        logger.warning("checkout_session_unavailable", extra={"payment_type": payment_type.value})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create payment",
        )
    return {"success": True, "payment_url": session.payment_url, "invoice_id": session.invoice_id}
