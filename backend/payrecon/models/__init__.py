from payrecon.models.payment import Payment, FullPayment, InstallmentPayment
from payrecon.models.transaction import Transaction
from payrecon.models.scheduled_task import ScheduledTask
from payrecon.models.audit import PaymentEvent
from payrecon.models.notification import Notification

__all__ = [
    "Payment", "FullPayment", "InstallmentPayment", "Transaction",
    "ScheduledTask", "PaymentEvent", "Notification",
]
