import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class PaymentType(enum.StrEnum):
    TRAINER_BOOKING = "trainer_booking"
    GYM_MEMBERSHIP = "gym_membership"
    SERVICE_ORDER = "service_order"
    GENERIC = "generic"


class GatewayStatus(enum.StrEnum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PipelineState(enum.StrEnum):
    VERIFYING = "verifying"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PipelineState.VERIFYING


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PaymentRedirectAudit(Base):
    __tablename__ = "payment_redirect_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[str | None] = mapped_column(String(255), index=True)
    payment_type: Mapped[PaymentType | None] = mapped_column(
        Enum(PaymentType, values_callable=_enum_values, name="paymenttype")
    )
    raw_status: Mapped[str | None] = mapped_column(String(64))
    source: Mapped[str | None] = mapped_column(String(64))
    advisory_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    advisory_transaction_id: Mapped[str | None] = mapped_column(String(255))
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    resolved_state: Mapped[PipelineState] = mapped_column(
        Enum(PipelineState, values_callable=_enum_values, name="pipelinestate"), index=True
    )
    retryable: Mapped[bool] = mapped_column(Boolean, default=False)
    failure_reason: Mapped[str | None] = mapped_column(String(64))
    error_detail: Mapped[str | None] = mapped_column(Text)

    verified: Mapped[bool | None] = mapped_column(Boolean)
    gateway_status: Mapped[GatewayStatus | None] = mapped_column(
        Enum(GatewayStatus, values_callable=_enum_values, name="gatewaystatus")
    )
    settled_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    settled_transaction_id: Mapped[str | None] = mapped_column(String(255))
    verification_metadata: Mapped[dict | None] = mapped_column(JSON)

    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    user_agent: Mapped[str | None] = mapped_column(String(512))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    deep_link: Mapped[str | None] = mapped_column(Text)
    is_synthetic: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    environment: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )


@event.listens_for(PaymentRedirectAudit, "before_update")
def _reject_audit_update(mapper, connection, target) -> None:
    raise RuntimeError("payment_redirect_audit rows are append-only")
