from app.db.base import Base
from app.db.models import (
    GatewayStatus,
    PaymentRedirectAudit,
    PaymentType,
    PipelineState,
)

__all__ = [
    "Base",
    "GatewayStatus",
    "PaymentRedirectAudit",
    "PaymentType",
    "PipelineState",
]
