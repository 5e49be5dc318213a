"""
Payment Routes — Payment aggregates and the transactions that settle them.
Handles: payment creation, payment link registration, CASH / QR recording.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from payrecon.database import get_db
from payrecon.exceptions import ObligationError, PayloadError, PaymentNotFound
from payrecon.schemas.schemas import (
    PaymentCreateRequest, PaymentResponse, PaymentLinkRegisterRequest,
    LinkRegisteredResponse, ManualPaymentRequest, ManualPaymentResponse,
    TransactionResponse,
)
from payrecon.services.payment_ledger import PaymentLedger
from payrecon.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("", response_model=PaymentResponse, status_code=201)
def create_payment(payload: PaymentCreateRequest, db: Session = Depends(get_db)):
    """Create a payment with its unpaid full-payment or installment records."""
    payment = PaymentLedger(db).create_payment(payload.final_amount, payload.payment_type, payload.discount)
    return PaymentResponse.model_validate(payment)


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    try:
        payment = PaymentLedger(db).get_payment(payment_id)
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/links", response_model=LinkRegisteredResponse, status_code=201)
def register_payment_link(
    payment_id: str,
    payload: PaymentLinkRegisterRequest,
    db: Session = Depends(get_db),
):
    """Register a link issued at a gateway; its expiry check is scheduled."""
    try:
        registered = PaymentService(db).register_payment_link(
            payment_id,
            gateway=payload.gateway,
            link_id=payload.link_id,
            expires_at=payload.expires_at,
            link_url=payload.link_url,
            link_status=payload.link_status,
            amount=payload.amount,
            type=payload.type,
            created_at=payload.created_at,
        )
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    except ObligationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PayloadError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return LinkRegisteredResponse(
        transaction=TransactionResponse.from_model(registered.transaction),
        reference_id=registered.reference.reference_id,
        installment_number=registered.reference.installment_number,
        expiry_check_at=registered.expiry_check_at,
    )


@router.post("/{payment_id}/manual", response_model=ManualPaymentResponse, status_code=201)
def record_manual_payment(
    payment_id: str,
    payload: ManualPaymentRequest,
    db: Session = Depends(get_db),
):
    """Record a CASH or QR payment against the next unpaid obligation."""
    try:
        txn, payment = PaymentService(db).record_manual_payment(
            payment_id,
            payment_mode=payload.payment_mode,
            amount=payload.amount,
            transaction_reference=payload.transaction_reference,
            notes=payload.notes,
            type=payload.type,
        )
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    except ObligationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return ManualPaymentResponse(
        transaction=TransactionResponse.from_model(txn),
        payment=PaymentResponse.model_validate(payment),
    )
