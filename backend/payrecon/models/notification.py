"""
Notification Model — Record handed to the notification collaborator when a
payment is received.
"""
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint

from payrecon.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=False, index=True)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False)

    kind = Column(String(32), nullable=False, default="PAYMENT_RECEIVED")
    amount = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("transaction_id", "kind", name="uq_notification_transaction_kind"),
    )
