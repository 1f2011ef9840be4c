from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urlencode

from app.core.config import DEFAULT_MOBILE_APP_SCHEME
from app.db.models import PaymentType, PipelineState
from app.payments.errors import DeepLinkConstructionError
from app.payments.redirect_params import RedirectEvent

SUCCESS_PATH = "payment-success"
CANCEL_PATH = "payment-cancel"
DEEP_LINK_SOURCE = "web_redirect"

# Order in which optional fields are appended after the required ones.
OPTIONAL_FIELDS = ("orderType", "amount", "userId")

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*$")


@dataclass(frozen=True)
class DeepLinkTarget:
    scheme: str
    path: str
    query_params: tuple[tuple[str, str], ...]

    def render(self) -> str:
        return f"{self.scheme}://{self.path}?{urlencode(self.query_params)}"

    def __str__(self) -> str:
        return self.render()


def build_deep_link(
    payment_type: PaymentType,
    state: PipelineState,
    event: RedirectEvent,
    *,
    scheme: str = DEFAULT_MOBILE_APP_SCHEME,
    extra: Mapping[str, object] | None = None,
    timestamp_ms: int | None = None,
) -> DeepLinkTarget:
    if not _SCHEME_RE.match(scheme or ""):
        raise DeepLinkConstructionError(f"Invalid deep link scheme: {scheme!r}")
    order_id = (event.invoice_id or "").strip()
    if not order_id:
        raise DeepLinkConstructionError("Deep link requires a non-empty orderId")

    is_success = state is PipelineState.SUCCESS
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)

    params: list[tuple[str, str]] = [
        ("orderId", order_id),
        ("status", "completed" if is_success else "cancelled"),
        ("source", DEEP_LINK_SOURCE),
        ("timestamp", str(timestamp_ms)),
    ]

    optional: dict[str, str] = {}
    if payment_type is not PaymentType.GENERIC:
        optional["orderType"] = payment_type.value
    for source in (event.metadata, extra or {}):
        for key in OPTIONAL_FIELDS:
            value = source.get(key)
            if value is not None and str(value) != "":
                optional[key] = str(value)
    params.extend((key, optional[key]) for key in OPTIONAL_FIELDS if key in optional)

    return DeepLinkTarget(
        scheme=scheme,
        path=SUCCESS_PATH if is_success else CANCEL_PATH,
        query_params=tuple(params),
    )
