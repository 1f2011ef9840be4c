from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from app.core.config import Settings
from app.db.models import PaymentType

logger = logging.getLogger(__name__)

# Metadata key under which each payment type ships its serialized payload.
DETAILS_METADATA_KEYS = {
    PaymentType.TRAINER_BOOKING: "booking_data",
    PaymentType.GYM_MEMBERSHIP: "gym_membership_data",
    PaymentType.SERVICE_ORDER: "service_order_data",
}
_FORWARDED_ID_KEYS = ("trainer_id", "gym_id")


@dataclass(frozen=True)
class PaymentUrls:
    success_url: str
    cancel_url: str
    redirect_url: str


@dataclass(frozen=True)
class CheckoutRequest:
    amount: Decimal
    payment_type: PaymentType
    customer_email: str | None = None
    customer_name: str | None = None
    booking_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    payment_url: str
    invoice_id: str | None = None


def payment_type_label(payment_type: PaymentType) -> str:
    return "general" if payment_type is PaymentType.GENERIC else payment_type.value


def payment_urls(settings: Settings, payment_type: PaymentType, *, mobile: bool) -> PaymentUrls:
    query = urlencode({"type": payment_type_label(payment_type)})
    if mobile:
        scheme = settings.mobile_app_scheme
        success = f"{scheme}://payment/success?{query}"
        return PaymentUrls(
            success_url=success,
            cancel_url=f"{scheme}://payment/cancelled?{query}",
            redirect_url=success,
        )
    base = settings.public_app_url
    return PaymentUrls(
        success_url=f"{base}{settings.payment_success_path}?{query}",
        cancel_url=f"{base}{settings.payment_cancel_path}?{query}",
        redirect_url=f"{base}{settings.payment_redirect_path}?{query}",
    )


def build_checkout_request(
    payment_type: PaymentType,
    amount: Decimal,
    details: Mapping[str, Any] | None = None,
    *,
    customer_email: str | None = None,
    customer_name: str | None = None,
    booking_id: str | None = None,
) -> CheckoutRequest:
    if amount <= 0:
        raise ValueError("Checkout amount must be positive")
    details = dict(details or {})
    metadata: dict[str, str] = {"payment_type": payment_type.value}
    details_key = DETAILS_METADATA_KEYS.get(payment_type)
    if details_key and details:
        metadata[details_key] = json.dumps(details, ensure_ascii=False, sort_keys=True)
    for key in _FORWARDED_ID_KEYS:
        if details.get(key):
            metadata[key] = str(details[key])
    return CheckoutRequest(
        amount=amount,
        payment_type=payment_type,
        customer_email=customer_email,
        customer_name=customer_name,
        booking_id=booking_id,
        metadata=metadata,
    )


class CheckoutClient:
    """Opens a gateway checkout session through the create-payment function."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    def build_payload(self, request: CheckoutRequest, *, mobile: bool, user_agent: str | None = None) -> dict[str, Any]:
        urls = payment_urls(self._settings, request.payment_type, mobile=mobile)
        metadata: dict[str, Any] = {
            **request.metadata,
            "app_url": self._settings.public_app_url,
            "redirect_url": urls.redirect_url,
            "success_url": urls.success_url,
            "cancel_url": urls.cancel_url,
            "is_mobile_app": mobile,
            "payment_type": payment_type_label(request.payment_type),
            "user_agent": user_agent or "",
        }
        payload: dict[str, Any] = {
            "amount": str(request.amount),
            "currency": self._settings.payment_currency,
            "payment_type": request.payment_type.value,
            "return_url": urls.redirect_url,
            "cancel_url": urls.cancel_url,
            "customer_email": request.customer_email,
            "customer_name": request.customer_name,
            "booking_id": request.booking_id,
            "redirect_after_payment": True,
            "metadata": metadata,
        }
        return {key: value for key, value in payload.items() if value is not None}

    async def create_payment(
        self,
        request: CheckoutRequest,
        *,
        mobile: bool,
        user_agent: str | None = None,
    ) -> CheckoutSession | None:
        endpoint = self._settings.create_payment_endpoint
        if not endpoint:
            logger.warning("create_payment_endpoint_missing", extra={"payment_type": request.payment_type.value})
            return None

        payload = self.build_payload(request, mobile=mobile, user_agent=user_agent)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.payment_create_timeout_seconds),
                transport=self._transport,
            ) as client:
                response = await client.post(endpoint, json=payload, headers=self._settings.platform_headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "create_payment_failed",
                extra={"payment_type": request.payment_type.value, "error": exc.__class__.__name__},
            )
            return None

        try:
            data = response.json()
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict) or not data.get("success") or not data.get("payment_url"):
            logger.warning("create_payment_rejected", extra={"payment_type": request.payment_type.value})
            return None

        invoice_id = data.get("invoice_id") or data.get("order_id")
        logger.info(
            "checkout_session_created",
            extra={"payment_type": request.payment_type.value, "invoice_id": invoice_id, "mobile": mobile},
        )
        return CheckoutSession(payment_url=str(data["payment_url"]), invoice_id=str(invoice_id) if invoice_id else None)
