"""
Transaction Store — Lookup and guarded status transitions.

Every status change is a conditional UPDATE that only matches a PENDING row,
so concurrent webhooks, polls and expiry checks for the same transaction
serialize in the database: exactly one of them wins, the others observe
the terminal status and report an idempotent outcome.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payrecon.exceptions import ObligationError, PayloadError, TransactionNotFound
from payrecon.gateways.base import GatewayEvent
from payrecon.models.enums import PaymentMode, TransactionStatus
from payrecon.models.transaction import Transaction
from payrecon.schemas.metadata import TransactionMetadata

logger = logging.getLogger(__name__)

REFUND_REVIEW_MESSAGE = "Obligation already satisfied by another transaction; refund review required"


class ApplyOutcome(str, Enum):
    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"                        # Same terminal status seen again
    ALREADY_TERMINAL = "ALREADY_TERMINAL"          # Different terminal status, left untouched
    STILL_PENDING = "STILL_PENDING"
    OBLIGATION_SATISFIED = "OBLIGATION_SATISFIED"  # Late SUCCESS closed as CANCELLED


@dataclass
class ApplyResult:
    updated: bool
    outcome: ApplyOutcome
    transaction: Transaction


class TransactionStore:
    """Persistence for transactions. All methods take the caller's session."""

    @staticmethod
    def get(db: Session, transaction_id: str) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def get_by_link_id(db: Session, payment_link_id: str) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.payment_link_id == payment_link_id, Transaction.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def resolve(db: Session, event: GatewayEvent) -> Transaction:
        """Find the transaction a gateway event refers to.

        Raises:
            TransactionNotFound: no live transaction for the link id, or the
                gateway / echoed reference does not match what we issued.
        """
        txn = TransactionStore.get_by_link_id(db, event.external_id)
        if not txn:
            raise TransactionNotFound(event.external_id)

        if txn.payment_gateway and txn.payment_gateway != event.gateway.value:
            raise TransactionNotFound(
                event.external_id, f"Link issued on {txn.payment_gateway}, event from {event.gateway.value}",
            )

        stored_reference = TransactionMetadata.load(txn.txn_metadata).reference_id
        if event.reference_id and stored_reference and event.reference_id != stored_reference:
            raise TransactionNotFound(
                event.external_id,
                f"Reference mismatch (stored {stored_reference}, received {event.reference_id})",
            )
        return txn

    @staticmethod
    def apply_gateway_event(db: Session, event: GatewayEvent) -> ApplyResult:
        """Apply a normalized gateway event to its transaction.

        The status write is committed before returning; the caller invokes the
        ledger afterwards.
        """
        txn = TransactionStore.resolve(db, event)

        current = TransactionStatus(txn.transaction_status)
        if current.is_terminal:
            return TransactionStore._terminal_result(txn, event)

        if event.status == TransactionStatus.PENDING:
            return ApplyResult(False, ApplyOutcome.STILL_PENDING, txn)

        if event.status == TransactionStatus.SUCCESS and TransactionStore.obligation_satisfied(db, txn):
            return TransactionStore._close_satisfied(db, txn, event)

        try:
            won = TransactionStore._transition(db, txn, event.status, event=event)
        except IntegrityError:
            # A concurrent SUCCESS for the same obligation committed first
            db.rollback()
            db.refresh(txn)
            return TransactionStore._close_satisfied(db, txn, event)

        if not won:
            db.refresh(txn)
            return TransactionStore._terminal_result(txn, event)

        return ApplyResult(True, ApplyOutcome.APPLIED, txn)

    @staticmethod
    def mark_cancelled(db: Session, txn: Transaction, reason: str, event: Optional[GatewayEvent] = None) -> bool:
        """PENDING → CANCELLED. Returns False when the transaction was already terminal."""
        won = TransactionStore._transition(
            db, txn, TransactionStatus.CANCELLED, event=event, message=reason,
        )
        db.refresh(txn)
        return won

    @staticmethod
    def obligation_satisfied(db: Session, txn: Transaction) -> bool:
        """True when another live SUCCESS transaction already pays the same obligation."""
        query = db.query(Transaction.id).filter(
            Transaction.payment_id == txn.payment_id,
            func.coalesce(Transaction.installment_number, 0) == (txn.installment_number or 0),
            Transaction.transaction_status == TransactionStatus.SUCCESS.value,
            Transaction.deleted_at.is_(None),
            Transaction.id != txn.id,
        )
        return db.query(query.exists()).scalar()

    @staticmethod
    def find_stale_pending(db: Session, older_than: datetime, limit: int) -> list[Transaction]:
        """Oldest PENDING payment-link transactions created before `older_than`."""
        return (
            db.query(Transaction)
            .filter(
                Transaction.transaction_status == TransactionStatus.PENDING.value,
                Transaction.payment_mode == PaymentMode.PAYMENT_LINK.value,
                Transaction.payment_link_id.isnot(None),
                Transaction.deleted_at.is_(None),
                Transaction.created_at < older_than,
            )
            .order_by(Transaction.created_at.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def find_pending_for_obligation(db: Session, payment_id: str, installment_number: Optional[int]) -> list[Transaction]:
        return (
            db.query(Transaction)
            .filter(
                Transaction.payment_id == payment_id,
                func.coalesce(Transaction.installment_number, 0) == (installment_number or 0),
                Transaction.transaction_status == TransactionStatus.PENDING.value,
                Transaction.payment_mode == PaymentMode.PAYMENT_LINK.value,
                Transaction.deleted_at.is_(None),
            )
            .all()
        )

    @staticmethod
    def create_link_transaction(
        db: Session,
        payment_id: str,
        installment_number: Optional[int],
        amount: int,
        gateway: str,
        payment_link_id: str,
        metadata: TransactionMetadata,
    ) -> Transaction:
        txn = Transaction(
            payment_id=payment_id,
            installment_number=installment_number,
            amount=amount,
            payment_mode=PaymentMode.PAYMENT_LINK.value,
            transaction_status=TransactionStatus.PENDING.value,
            payment_gateway=gateway,
            payment_link_id=payment_link_id,
            txn_metadata=metadata.dump(),
        )
        db.add(txn)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise PayloadError(f"Payment link already registered: {payment_link_id}")
        db.refresh(txn)
        return txn

    @staticmethod
    def record_manual_payment(
        db: Session,
        payment_id: str,
        installment_number: Optional[int],
        amount: int,
        payment_mode: str,
        metadata: TransactionMetadata,
        transaction_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Insert a CASH/QR transaction directly as SUCCESS."""
        now = datetime.utcnow()
        txn = Transaction(
            payment_id=payment_id,
            installment_number=installment_number,
            amount=amount,
            payment_mode=payment_mode,
            transaction_status=TransactionStatus.SUCCESS.value,
            transaction_reference=transaction_reference,
            notes=notes,
            txn_metadata=metadata.dump(),
            txn_date=now,
        )
        db.add(txn)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ObligationError("Obligation already paid")
        db.refresh(txn)
        return txn

    # ─── Internals ───

    @staticmethod
    def _transition(
        db: Session,
        txn: Transaction,
        status: TransactionStatus,
        event: Optional[GatewayEvent] = None,
        message: Optional[str] = None,
    ) -> bool:
        metadata = TransactionMetadata.load(txn.txn_metadata)
        if event:
            metadata = metadata.with_response(
                txn_id=event.gateway_txn_id,
                bank_txn_id=event.bank_reference,
                response_code=event.error_code,
            ).with_link_status(event.link_status)
        if message:
            metadata = metadata.with_response(response_message=message)

        now = datetime.utcnow()
        values = {
            Transaction.transaction_status: status.value,
            Transaction.txn_metadata: metadata.dump(),
            Transaction.updated_at: now,
        }
        if status in (TransactionStatus.SUCCESS, TransactionStatus.FAILED):
            values[Transaction.txn_date] = event.occurred_at if event and event.occurred_at else now

        stmt = (
            update(Transaction)
            .where(
                Transaction.id == txn.id,
                Transaction.transaction_status == TransactionStatus.PENDING.value,
                Transaction.deleted_at.is_(None),
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def _terminal_result(txn: Transaction, event: GatewayEvent) -> ApplyResult:
        current = TransactionStatus(txn.transaction_status)
        if current == event.status:
            logger.info("Duplicate %s event for transaction %s, no-op", event.status.value, txn.id)
            return ApplyResult(False, ApplyOutcome.DUPLICATE, txn)

        if event.status == TransactionStatus.SUCCESS:
            logger.error(
                "SUCCESS received for %s transaction %s (link %s); manual review required",
                current.value, txn.id, txn.payment_link_id,
            )
        else:
            logger.info(
                "Ignoring %s event for %s transaction %s", event.status.value, current.value, txn.id,
            )
        return ApplyResult(False, ApplyOutcome.ALREADY_TERMINAL, txn)

    @staticmethod
    def _close_satisfied(db: Session, txn: Transaction, event: GatewayEvent) -> ApplyResult:
        logger.error(
            "Obligation for payment %s (installment %s) already paid; closing transaction %s for refund review",
            txn.payment_id, txn.installment_number, txn.id,
        )
        won = TransactionStore._transition(
            db, txn, TransactionStatus.CANCELLED, event=event, message=REFUND_REVIEW_MESSAGE,
        )
        db.refresh(txn)
        if not won:
            return TransactionStore._terminal_result(txn, event)
        return ApplyResult(False, ApplyOutcome.OBLIGATION_SATISFIED, txn)
