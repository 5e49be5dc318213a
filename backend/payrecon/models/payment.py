"""
Payment Models — The billing obligation for one plan or RTO service and
its full-payment / installment sub-records.
"""
from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from payrecon.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)

    payment_type = Column(String(16), nullable=False, default="FULL_PAYMENT")  # FULL_PAYMENT | INSTALLMENTS
    payment_status = Column(String(16), nullable=False, default="PENDING")     # PENDING | PARTIALLY_PAID | FULLY_PAID

    final_amount = Column(Integer, nullable=False)   # Amount in paise
    discount = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    full_payment = relationship("FullPayment", uselist=False, back_populates="payment")
    installments = relationship(
        "InstallmentPayment",
        back_populates="payment",
        order_by="InstallmentPayment.installment_number",
    )


class FullPayment(Base):
    __tablename__ = "full_payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, unique=True, index=True)

    is_paid = Column(Boolean, nullable=False, default=False)
    payment_mode = Column(String(16))   # PAYMENT_LINK | CASH | QR
    payment_date = Column(String(8))    # YYYYMMDD

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payment = relationship("Payment", back_populates="full_payment")


class InstallmentPayment(Base):
    __tablename__ = "installment_payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)

    installment_number = Column(Integer, nullable=False)   # 1 or 2
    amount = Column(Integer, nullable=False)

    is_paid = Column(Boolean, nullable=False, default=False)
    payment_mode = Column(String(16))
    payment_date = Column(String(8))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payment = relationship("Payment", back_populates="installments")

    __table_args__ = (
        UniqueConstraint("payment_id", "installment_number", name="uq_installment_number"),
        Index("idx_installment_payments_paid", "payment_id", "is_paid"),
    )
