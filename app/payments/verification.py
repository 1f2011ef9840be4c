from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from app.core.config import Settings
from app.db.models import GatewayStatus, PaymentType
from app.payments.errors import VerificationTransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    gateway_status: GatewayStatus
    settled_amount: Decimal | None = None
    settled_transaction_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_settled(self) -> bool:
        return self.verified and self.gateway_status is GatewayStatus.COMPLETED


class VerificationClient:
    """Authoritative status check against the verify-payment function."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def verify(
        self,
        invoice_id: str,
        raw_status: str | None,
        payment_type: PaymentType,
        user_id: str | None,
    ) -> VerificationResult:
        endpoint = self._settings.verify_payment_endpoint
        if not endpoint:
            logger.warning("verify_payment_endpoint_missing", extra={"invoice_id": invoice_id})
            raise VerificationTransportError(
                "Payment verification endpoint is not configured",
                category="missing_endpoint",
            )

        payload = {
            "invoice_id": invoice_id,
            "status": raw_status,
            "payment_type": payment_type.value,
            "user_id": user_id,
        }
        timeout = httpx.Timeout(self._settings.payment_verify_timeout_seconds)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    endpoint,
                    json=payload,
                    headers=self._settings.platform_headers,
                )
        except httpx.TimeoutException as exc:
            logger.warning("payment_verification_timeout", extra={"invoice_id": invoice_id})
            raise VerificationTransportError(
                "Payment verification timed out",
                category="timeout",
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(
                "payment_verification_request_failed",
                extra={"invoice_id": invoice_id, "error": exc.__class__.__name__},
            )
            raise VerificationTransportError(
                "Payment verification service is unreachable",
                category="request_error",
            ) from exc

        if not 200 <= response.status_code < 300:
            logger.warning(
                "payment_verification_http_error",
                extra={"invoice_id": invoice_id, "status_code": response.status_code},
            )
            raise VerificationTransportError(
                f"Payment verification failed with HTTP {response.status_code}",
                status_code=response.status_code,
                category="http_error",
            )

        data = _safe_json(response)
        if data is None:
            raise VerificationTransportError(
                "Payment verification returned a non-JSON response",
                status_code=response.status_code,
                category="bad_response",
            )

        result = parse_verification_response(data)
        if result is None:
            logger.warning(
                "payment_verification_status_unrecognized",
                extra={"invoice_id": invoice_id, "status": str(data.get("status"))[:32]},
            )
            raise VerificationTransportError(
                "Payment verification returned no recognizable status",
                status_code=response.status_code,
                category="bad_response",
            )

        logger.info(
            "payment_verification_result",
            extra={
                "invoice_id": invoice_id,
                "verified": result.verified,
                "gateway_status": result.gateway_status.value,
                "amount": result.settled_amount,
                "transaction_id": result.settled_transaction_id,
            },
        )
        return result


def parse_verification_response(data: dict[str, Any]) -> VerificationResult | None:
    status = _parse_gateway_status(data.get("status"))
    if status is None:
        return None
    error = data.get("error")
    return VerificationResult(
        verified=data.get("success") is True,
        gateway_status=status,
        settled_amount=_parse_decimal(data.get("amount")),
        settled_transaction_id=_as_optional_str(data.get("transaction_id")),
        metadata=_stringify_metadata(data.get("metadata")),
        error=str(error) if error else None,
    )


def _parse_gateway_status(value: object) -> GatewayStatus | None:
    if not isinstance(value, str):
        return None
    token = value.strip().upper()
    if token == "CANCELED":
        token = GatewayStatus.CANCELLED.value
    try:
        return GatewayStatus(token)
    except ValueError:
        return None


def _parse_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _stringify_metadata(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    metadata: dict[str, str] = {}
    for key, item in value.items():
        if item is None:
            continue
        if isinstance(item, str):
            metadata[str(key)] = item
        else:
            metadata[str(key)] = json.dumps(item, ensure_ascii=False, sort_keys=True)
    return metadata


def _safe_json(response: httpx.Response) -> dict[str, Any] | None:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(data, dict):
        return data
    return None
