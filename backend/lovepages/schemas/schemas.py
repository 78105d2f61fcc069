"""
Pydantic Schemas — Request & Response models for API validation,
plus the provider-agnostic payment shapes used inside the payment core.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


# ──────────────── Payment core ────────────────

class PaymentProvider(str, Enum):
    MERCADOPAGO = "mercadopago"
    PAYPAL = "paypal"
    SIMULATION = "simulation"


class PayerInfo(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    payer_id: Optional[str] = None


class PaymentRecordData(BaseModel):
    """Normalized payment, produced only by a provider adapter's normalize()."""

    payment_id: str = Field(..., description="Provider id of this payment/capture (not the order id)")
    provider_order_id: Optional[str] = Field(None, description="Order/preference id, for cross-referencing")
    provider: PaymentProvider
    amount: Decimal
    currency: str = "USD"
    status: str
    status_detail: Optional[str] = None
    payment_method: Optional[str] = None
    payment_type: Optional[str] = None
    payer: Optional[PayerInfo] = None
    date: datetime

    def identifiers(self) -> List[str]:
        return [i for i in (self.payment_id, self.provider_order_id) if i]


class WebhookEventKind(str, Enum):
    PAYMENT_MAY_BE_FINAL = "payment_may_be_final"
    IGNORE = "ignore"


class WebhookEvent(BaseModel):
    """A provider callback reduced to what the reconciliation flow needs."""

    provider: PaymentProvider
    kind: WebhookEventKind
    resource_id: Optional[str] = None   # MP payment id | PayPal capture id
    order_id: Optional[str] = None      # PayPal order id, when extractable
    raw_type: Optional[str] = None
    reason: Optional[str] = None

    @property
    def actionable(self) -> bool:
        return self.kind == WebhookEventKind.PAYMENT_MAY_BE_FINAL


class IntentResult(BaseModel):
    provider_order_id: str
    redirect_url: str
    sandbox_url: Optional[str] = None


# ──────────────── Users ────────────────

class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    display_name: str = Field(..., min_length=1, max_length=128)


class UserCreateResponse(BaseModel):
    user_id: str
    token: str
    message: str = "User created successfully"


class UserProfileResponse(BaseModel):
    user_id: str
    email: str
    display_name: str
    is_pro: bool
    pro_expires_at: Optional[datetime] = None
    total_payments: int = 0


# ──────────────── Payments ────────────────

class CreateIntentResponse(BaseModel):
    success: bool = True
    provider: PaymentProvider
    provider_order_id: str
    redirect_url: str
    sandbox_url: Optional[str] = None
    message: str = "Payment intent created successfully"


class CaptureResponse(BaseModel):
    success: bool = True
    status: str = "completed"        # completed | processing
    is_pro: bool = False
    already_processed: bool = False
    payment: Optional[PaymentRecordData] = None
    message: str = ""


class PaymentStatusResponse(BaseModel):
    provider: PaymentProvider
    payment_id: str
    provider_order_id: Optional[str] = None
    status: str
    status_detail: Optional[str] = None
    amount: Decimal
    currency: str
    date: datetime
    is_final_success: bool


class PaymentHistoryItem(BaseModel):
    provider: str
    payment_id: str
    provider_order_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    status_detail: Optional[str] = None
    payment_method: Optional[str] = None
    paid_at: datetime

    class Config:
        from_attributes = True


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentHistoryItem] = []
    is_pro: bool
    total_payments: int


# ──────────────── Webhooks / Generic ────────────────

class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: str
    uptime_seconds: float
