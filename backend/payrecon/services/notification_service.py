"""
Notification Service — Hand-off to the notification collaborator.

The dispatcher only enqueues a durable task in its own session, so a
notification problem can never undo ledger state. The task handler records
one PAYMENT_RECEIVED notification per transaction; message text and
delivery channels live outside this service.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payrecon.config import get_settings
from payrecon.database import SessionLocal
from payrecon.models.enums import TransactionStatus
from payrecon.models.notification import Notification
from payrecon.models.transaction import Transaction
from payrecon.services.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

PAYMENT_NOTIFICATION_TASK = "payment-notification"
PAYMENT_RECEIVED = "PAYMENT_RECEIVED"


class NotificationDispatcher:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, max_attempts: Optional[int] = None):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or get_settings().NOTIFICATION_MAX_RETRIES

    def notify(self, transaction_id: str) -> bool:
        """Enqueue a payment-received notification. Returns False if it could not be queued."""
        try:
            with self.session_factory() as db:
                TaskScheduler(db).schedule_at(
                    PAYMENT_NOTIFICATION_TASK,
                    {"transactionId": transaction_id},
                    run_at=datetime.utcnow(),
                    dedupe_key=f"{PAYMENT_NOTIFICATION_TASK}:{transaction_id}",
                    max_attempts=self.max_attempts,
                )
        except SQLAlchemyError:
            logger.exception("Could not enqueue notification for transaction %s", transaction_id)
            return False
        logger.info("Notification queued for transaction %s", transaction_id)
        return True


class NotificationService:
    @staticmethod
    def payment_received(db: Session, transaction_id: str) -> Optional[Notification]:
        """Record the PAYMENT_RECEIVED notification for a successful transaction (idempotent)."""
        txn = (
            db.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.deleted_at.is_(None))
            .first()
        )
        if not txn:
            logger.warning("Notification skipped: transaction %s not found", transaction_id)
            return None
        if txn.transaction_status != TransactionStatus.SUCCESS.value:
            logger.warning("Notification skipped: transaction %s is %s", transaction_id, txn.transaction_status)
            return None

        existing = (
            db.query(Notification)
            .filter(Notification.transaction_id == txn.id, Notification.kind == PAYMENT_RECEIVED)
            .first()
        )
        if existing:
            return existing

        notification = Notification(
            transaction_id=txn.id,
            payment_id=txn.payment_id,
            kind=PAYMENT_RECEIVED,
            amount=txn.amount,
        )
        db.add(notification)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return (
                db.query(Notification)
                .filter(Notification.transaction_id == txn.id, Notification.kind == PAYMENT_RECEIVED)
                .first()
            )
        db.refresh(notification)
        logger.info("Payment received notification recorded for transaction %s (%s paise)", txn.id, txn.amount)
        return notification


def handle_payment_notification(db: Session, payload: Dict[str, Any]) -> None:
    NotificationService.payment_received(db, payload["transactionId"])
