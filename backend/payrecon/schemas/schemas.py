"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Optional, Dict, List, Literal
from pydantic import BaseModel, ConfigDict, Field

from payrecon.models.enums import Gateway


# ──────────────── Webhooks ────────────────

class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None
    transaction_id: Optional[str] = None


# ──────────────── Payments (input) ────────────────

class PaymentCreateRequest(BaseModel):
    payment_type: Literal["FULL_PAYMENT", "INSTALLMENTS"]
    final_amount: int = Field(..., gt=0, description="Amount in paise after discount")
    discount: int = Field(0, ge=0)


# ──────────────── Payment Links ────────────────

class PaymentLinkRegisterRequest(BaseModel):
    gateway: Gateway
    link_id: str = Field(..., min_length=1, max_length=128, description="Link / merchant order id issued to the gateway")
    link_url: Optional[str] = None
    link_status: Optional[str] = None
    amount: Optional[int] = Field(None, gt=0, description="Amount in paise; defaults to the obligation amount")
    expires_at: datetime
    created_at: Optional[datetime] = None
    type: Literal["enrollment", "rto-service"] = "enrollment"


class ManualPaymentRequest(BaseModel):
    payment_mode: Literal["CASH", "QR"]
    amount: Optional[int] = Field(None, gt=0, description="Amount in paise; defaults to the obligation amount")
    transaction_reference: Optional[str] = Field(None, max_length=128)
    notes: Optional[str] = None
    type: Literal["enrollment", "rto-service"] = "enrollment"


# ──────────────── Transactions ────────────────

class TransactionResponse(BaseModel):
    id: str
    payment_id: str
    installment_number: Optional[int] = None
    amount: int
    payment_mode: str
    transaction_status: str
    payment_gateway: Optional[str] = None
    payment_link_id: Optional[str] = None
    transaction_reference: Optional[str] = None
    metadata: Dict = {}
    txn_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, txn) -> "TransactionResponse":
        return cls(
            id=txn.id,
            payment_id=txn.payment_id,
            installment_number=txn.installment_number,
            amount=txn.amount,
            payment_mode=txn.payment_mode,
            transaction_status=txn.transaction_status,
            payment_gateway=txn.payment_gateway,
            payment_link_id=txn.payment_link_id,
            transaction_reference=txn.transaction_reference,
            metadata=txn.txn_metadata or {},
            txn_date=txn.txn_date,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class PaymentEventEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: str
    action: str
    source: str
    payload_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    event_metadata: Optional[Dict] = None
    timestamp: datetime


class ChainVerifyResponse(BaseModel):
    valid: bool
    total_entries: int
    broken_at: Optional[int] = None
    message: Optional[str] = None


# ──────────────── Payments ────────────────

class FullPaymentEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    is_paid: bool
    payment_mode: Optional[str] = None
    payment_date: Optional[str] = None


class InstallmentEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    installment_number: int
    amount: int
    is_paid: bool
    payment_mode: Optional[str] = None
    payment_date: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    payment_type: str
    payment_status: str
    final_amount: int
    discount: int
    full_payment: Optional[FullPaymentEntry] = None
    installments: List[InstallmentEntry] = []


class LinkRegisteredResponse(BaseModel):
    transaction: TransactionResponse
    reference_id: str
    installment_number: Optional[int] = None
    expiry_check_at: datetime


class ManualPaymentResponse(BaseModel):
    transaction: TransactionResponse
    payment: PaymentResponse


# ──────────────── Reconciliation ────────────────

class SweepReportResponse(BaseModel):
    total: int
    reconciled: int
    failed: int
    cancelled: int
    pending: int
    errors: int
