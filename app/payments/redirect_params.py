from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Mapping
from urllib.parse import parse_qsl, urlsplit

from app.db.models import PaymentType
from app.payments.errors import MissingInvoiceIdError

CANCELLED_STATUS = "cancelled"
SUCCESS_STATUS = "success"
FAILED_STATUS = "failed"

_CANCEL_TOKENS = {"cancel", "cancelled", "canceled"}
_INVOICE_ID_KEYS = ("invoice_id", "order_id")

SYNTHETIC_SOURCES = {"test_validator"}


@dataclass(frozen=True)
class RedirectEvent:
    invoice_id: str
    raw_status: str | None
    payment_type: PaymentType
    amount: Decimal | None
    transaction_id: str | None
    received_at: datetime
    source: str | None = None
    metadata: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_cancellation(self) -> bool:
        return self.raw_status == CANCELLED_STATUS

    @property
    def is_synthetic(self) -> bool:
        return self.source in SYNTHETIC_SOURCES


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    token = value.strip().lower()
    if not token:
        return None
    if token in _CANCEL_TOKENS:
        return CANCELLED_STATUS
    return token


def normalize_payment_type(value: str | None) -> PaymentType:
    token = (value or "").strip().lower()
    try:
        return PaymentType(token)
    except ValueError:
        return PaymentType.GENERIC


def parse_redirect_params(
    params: Mapping[str, str],
    *,
    received_at: datetime | None = None,
    metadata: Mapping[str, str] | None = None,
) -> RedirectEvent:
    invoice_id = _first_non_empty(params, _INVOICE_ID_KEYS)
    if not invoice_id:
        raise MissingInvoiceIdError()

    return RedirectEvent(
        invoice_id=invoice_id,
        raw_status=normalize_status(params.get("status")),
        payment_type=normalize_payment_type(params.get("type")),
        amount=_parse_amount(params.get("amount")),
        transaction_id=_as_non_empty_str(params.get("transaction_id")),
        received_at=received_at or datetime.now(timezone.utc),
        source=_as_non_empty_str(params.get("source")),
        metadata=MappingProxyType(dict(metadata or {})),
    )


def parse_redirect_url(url: str, *, received_at: datetime | None = None) -> RedirectEvent:
    query = urlsplit(url).query
    # The first occurrence of a repeated key wins.
    params: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        params.setdefault(key, value)
    return parse_redirect_params(params, received_at=received_at)


def _first_non_empty(params: Mapping[str, str], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = _as_non_empty_str(params.get(key))
        if value:
            return value
    return None


def _as_non_empty_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_amount(value: str | None) -> Decimal | None:
    text = _as_non_empty_str(value)
    if text is None:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount
