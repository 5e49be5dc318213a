"""
Status vocabularies shared by models, services and schemas.
Stored as plain strings in the database.
"""
from enum import Enum


class PaymentType(str, Enum):
    FULL_PAYMENT = "FULL_PAYMENT"
    INSTALLMENTS = "INSTALLMENTS"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_PAID = "FULLY_PAID"


class PaymentMode(str, Enum):
    PAYMENT_LINK = "PAYMENT_LINK"
    CASH = "CASH"
    QR = "QR"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Gateway(str, Enum):
    RAZORPAY = "RAZORPAY"
    PHONEPE = "PHONEPE"
    CASHFREE = "CASHFREE"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
