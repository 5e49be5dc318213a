"""
Payment Service — Registers issued payment links and manual (CASH / QR)
payments, creating the transactions the reconciliation core works on.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from payrecon.models.enums import Gateway
from payrecon.models.payment import Payment
from payrecon.models.transaction import Transaction
from payrecon.schemas.metadata import build_manual_payment_metadata, build_payment_link_metadata
from payrecon.services.audit_service import AuditService
from payrecon.services.payment_ledger import ObligationRef, PaymentLedger
from payrecon.services.task_scheduler import TaskScheduler
from payrecon.services.transaction_store import TransactionStore
from payrecon.utils.dates import to_naive_utc

logger = logging.getLogger(__name__)

PAYMENT_LINK_EXPIRY_TASK = "payment-link-expiry"


def expiry_task_key(payment_link_id: str) -> str:
    return f"{PAYMENT_LINK_EXPIRY_TASK}:{payment_link_id}"


@dataclass
class RegisteredLink:
    transaction: Transaction
    reference: ObligationRef
    expiry_check_at: datetime


class PaymentService:
    def __init__(self, db: Session, ledger: Optional[PaymentLedger] = None):
        self.db = db
        self.ledger = ledger or PaymentLedger(db)

    def register_payment_link(
        self,
        payment_id: str,
        gateway: Gateway,
        link_id: str,
        expires_at: datetime,
        link_url: Optional[str] = None,
        link_status: Optional[str] = None,
        amount: Optional[int] = None,
        type: str = "enrollment",
        created_at: Optional[datetime] = None,
    ) -> RegisteredLink:
        """Create the PENDING transaction for a link and schedule its expiry check.

        An older PENDING link for the same obligation is cancelled first, so
        only the newest link can settle it.
        """
        payment = self.ledger.get_payment(payment_id)
        reference = self.ledger.prepare_payment_reference(payment)
        expires_at = to_naive_utc(expires_at)

        scheduler = TaskScheduler(self.db)
        for previous in TransactionStore.find_pending_for_obligation(self.db, payment.id, reference.installment_number):
            if TransactionStore.mark_cancelled(self.db, previous, f"Superseded by payment link {link_id}"):
                scheduler.cancel(expiry_task_key(previous.payment_link_id))
                AuditService.log(
                    self.db, previous.id, "LINK_SUPERSEDED", "MANUAL",
                    payload={"externalId": previous.payment_link_id, "supersededBy": link_id},
                )
                logger.info("Link %s superseded by %s", previous.payment_link_id, link_id)

        metadata = build_payment_link_metadata(
            payment_type=payment.payment_type,
            type=type,
            link_id=link_id,
            link_url=link_url,
            link_status=link_status,
            link_expires_at=expires_at,
            link_created_at=created_at,
            reference_id=reference.reference_id,
        )
        txn = TransactionStore.create_link_transaction(
            self.db,
            payment_id=payment.id,
            installment_number=reference.installment_number,
            amount=amount or reference.amount,
            gateway=gateway.value,
            payment_link_id=link_id,
            metadata=metadata,
        )

        scheduler.schedule_at(
            PAYMENT_LINK_EXPIRY_TASK,
            {"paymentLinkId": link_id},
            run_at=expires_at,
            dedupe_key=expiry_task_key(link_id),
        )
        AuditService.log(
            self.db, txn.id, "LINK_REGISTERED", gateway.value,
            payload={"externalId": link_id, "amount": txn.amount, "referenceId": reference.reference_id},
        )
        logger.info("Registered %s link %s for payment %s (installment %s), expiry check at %s",
                    gateway.value, link_id, payment.id, reference.installment_number, expires_at.isoformat())
        return RegisteredLink(txn, reference, expires_at)

    def record_manual_payment(
        self,
        payment_id: str,
        payment_mode: str,
        amount: Optional[int] = None,
        transaction_reference: Optional[str] = None,
        notes: Optional[str] = None,
        type: str = "enrollment",
    ) -> tuple[Transaction, Payment]:
        """Record a CASH / QR payment as SUCCESS and mark its obligation paid."""
        payment = self.ledger.get_payment(payment_id)
        reference = self.ledger.prepare_payment_reference(payment)

        metadata = build_manual_payment_metadata(payment.payment_type, type, datetime.utcnow())
        txn = TransactionStore.record_manual_payment(
            self.db,
            payment_id=payment.id,
            installment_number=reference.installment_number,
            amount=amount or reference.amount,
            payment_mode=payment_mode,
            metadata=metadata,
            transaction_reference=transaction_reference,
            notes=notes,
        )

        result = self.ledger.mark_obligation_paid(
            payment.id,
            payment.payment_type,
            reference.reference_id,
            reference.installment_number,
            payment_mode=payment_mode,
            transaction_id=txn.id,
            paid_at=txn.txn_date,
        )
        AuditService.log(
            self.db, txn.id, "MANUAL_RECORDED", "MANUAL",
            payload={"mode": payment_mode, "amount": txn.amount, "reference": transaction_reference},
        )
        return txn, result.payment
