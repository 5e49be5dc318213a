"""
Transaction Routes — Transaction lookup and its audit trail.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from payrecon.database import get_db
from payrecon.schemas.schemas import ChainVerifyResponse, PaymentEventEntry, TransactionResponse
from payrecon.services.audit_service import AuditService
from payrecon.services.transaction_store import TransactionStore

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


def _get_or_404(db: Session, transaction_id: str):
    txn = TransactionStore.get(db, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    return TransactionResponse.from_model(_get_or_404(db, transaction_id))


@router.get("/{transaction_id}/events", response_model=List[PaymentEventEntry])
def get_transaction_events(transaction_id: str, db: Session = Depends(get_db)):
    """Chronological event trail, including idempotent no-ops."""
    _get_or_404(db, transaction_id)
    return [PaymentEventEntry.model_validate(entry) for entry in AuditService.get_trail(db, transaction_id)]


@router.get("/{transaction_id}/events/verify", response_model=ChainVerifyResponse)
def verify_transaction_events(transaction_id: str, db: Session = Depends(get_db)):
    _get_or_404(db, transaction_id)
    return AuditService.verify_chain(db, transaction_id)
