"""
Payment Event Model — Tamper-evident trail of every event applied to a
transaction. Each entry is SHA-256 hashed and chained to the previous one.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from payrecon.database import Base


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=False, index=True)

    action = Column(String(40), nullable=False)
    # Actions: LINK_REGISTERED, LINK_SUPERSEDED, MANUAL_RECORDED, WEBHOOK_APPLIED,
    #          WEBHOOK_DUPLICATE, WEBHOOK_PENDING, WEBHOOK_LATE, OBLIGATION_SATISFIED,
    #          RECONCILED_PAID, RECONCILED_FAILED, EXPIRED_CANCELLED, RECONCILE_NOOP,
    #          FAILSAFE_CANCELLED

    source = Column(String(24), nullable=False)   # RAZORPAY | PHONEPE | CASHFREE | SCHEDULER | MANUAL

    payload_hash = Column(String(64))       # Chain hash of this entry
    previous_hash = Column(String(64))      # Chain link for tamper detection

    event_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
