"""
Transaction Model — One attempt to pay a Payment through one channel
(a gateway payment link, a cash receipt or a QR payment).
"""
from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Index, Text, and_, func
from sqlalchemy.orm import relationship

from payrecon.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=True)   # 1 | 2, null for full payment

    amount = Column(Integer, nullable=False)              # Amount in paise
    payment_mode = Column(String(16), nullable=False)     # PAYMENT_LINK | CASH | QR
    transaction_status = Column(String(16), nullable=False, default="PENDING", index=True)
    # Statuses: PENDING → SUCCESS | FAILED | CANCELLED (terminal)

    payment_gateway = Column(String(16))                  # RAZORPAY | PHONEPE | CASHFREE, null for manual
    payment_link_id = Column(String(128), unique=True)    # Link / merchant order id issued to the gateway
    transaction_reference = Column(String(128))           # Manual payments: UPI ref, receipt no.
    notes = Column(Text)

    # Structured gateway data, see payrecon.schemas.metadata.TransactionMetadata
    txn_metadata = Column("metadata", JSON, nullable=False, default=dict)

    txn_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    payment = relationship("Payment")


# At most one SUCCESS per obligation: (payment, installment) with null meaning the full payment
_success_only = and_(
    Transaction.transaction_status == "SUCCESS",
    Transaction.deleted_at.is_(None),
)
Index(
    "uq_transactions_obligation_success",
    Transaction.payment_id,
    func.coalesce(Transaction.installment_number, 0),
    unique=True,
    sqlite_where=_success_only,
    postgresql_where=_success_only,
)
