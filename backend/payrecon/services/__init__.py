from payrecon.services.audit_service import AuditService
from payrecon.services.event_processor import PaymentEventProcessor, ProcessResult
from payrecon.services.notification_service import NotificationDispatcher, NotificationService
from payrecon.services.payment_ledger import LedgerResult, PaymentLedger, derive_payment_status
from payrecon.services.payment_service import PaymentService
from payrecon.services.reconciliation import LinkCheckOutcome, Reconciler, SweepReport
from payrecon.services.task_scheduler import TaskRunner, TaskScheduler
from payrecon.services.transaction_store import ApplyOutcome, ApplyResult, TransactionStore

__all__ = [
    "AuditService", "PaymentEventProcessor", "ProcessResult",
    "NotificationDispatcher", "NotificationService",
    "LedgerResult", "PaymentLedger", "derive_payment_status",
    "PaymentService", "LinkCheckOutcome", "Reconciler", "SweepReport",
    "TaskRunner", "TaskScheduler", "ApplyOutcome", "ApplyResult", "TransactionStore",
]
