"""
Payment Ledger — Marks obligations paid and derives Payment status.

payment_status is never written directly by callers: it is recomputed from
the FullPayment / InstallmentPayment `is_paid` flags after every change, so
events arriving in any order converge on the same aggregate.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from payrecon.exceptions import ObligationError, PaymentNotFound
from payrecon.models.enums import PaymentMode, PaymentStatus, PaymentType
from payrecon.models.payment import FullPayment, InstallmentPayment, Payment
from payrecon.services.notification_service import NotificationDispatcher
from payrecon.utils.dates import format_payment_date

logger = logging.getLogger(__name__)

REQUIRED_INSTALLMENTS = 2


@dataclass
class LedgerResult:
    payment: Payment
    changed: bool


@dataclass
class ObligationRef:
    """The sub-record a new payment link or manual payment should settle."""

    reference_id: str
    installment_number: Optional[int]
    amount: int


def split_installments(final_amount: int) -> tuple[int, int]:
    first = math.ceil(final_amount / 2)
    return first, final_amount - first


def derive_payment_status(
    payment_type: str,
    full_paid: Optional[bool] = None,
    installment_flags: Sequence[bool] = (),
) -> PaymentStatus:
    """Payment status as a pure function of its sub-records."""
    if payment_type == PaymentType.FULL_PAYMENT.value:
        return PaymentStatus.FULLY_PAID if full_paid else PaymentStatus.PENDING

    paid = sum(1 for flag in installment_flags if flag)
    required = max(REQUIRED_INSTALLMENTS, len(installment_flags))
    if paid == 0:
        return PaymentStatus.PENDING
    if paid >= required:
        return PaymentStatus.FULLY_PAID
    return PaymentStatus.PARTIALLY_PAID


class PaymentLedger:
    """Payment aggregate operations. Notifies through the dispatcher on genuine changes."""

    def __init__(self, db: Session, dispatcher=None):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher()

    def get_payment(self, payment_id: str, for_update: bool = False) -> Payment:
        query = self.db.query(Payment).filter(Payment.id == payment_id)
        if for_update:
            query = query.with_for_update()
        payment = query.first()
        if not payment:
            raise PaymentNotFound(payment_id)
        return payment

    def create_payment(self, final_amount: int, payment_type: str, discount: int = 0) -> Payment:
        """Create a payment with its unpaid sub-records (full payment, or two installments)."""
        payment = Payment(
            payment_type=payment_type,
            payment_status=PaymentStatus.PENDING.value,
            final_amount=final_amount,
            discount=discount,
        )
        self.db.add(payment)
        self.db.flush()

        if payment_type == PaymentType.FULL_PAYMENT.value:
            self.db.add(FullPayment(payment_id=payment.id, is_paid=False))
        else:
            first, second = split_installments(final_amount)
            self.db.add(InstallmentPayment(payment_id=payment.id, installment_number=1, amount=first))
            self.db.add(InstallmentPayment(payment_id=payment.id, installment_number=2, amount=second))

        self.db.commit()
        self.db.refresh(payment)
        logger.info("Created %s payment %s for %s paise", payment_type, payment.id, final_amount)
        return payment

    def prepare_payment_reference(self, payment: Payment) -> ObligationRef:
        """Return the unpaid sub-record to target, creating it when missing.

        Raises:
            ObligationError: every obligation of the payment is already paid.
        """
        if payment.payment_type == PaymentType.FULL_PAYMENT.value:
            full = payment.full_payment
            if full is None:
                full = FullPayment(payment_id=payment.id, is_paid=False)
                self.db.add(full)
                self.db.commit()
                self.db.refresh(payment)
            if full.is_paid:
                raise ObligationError(f"Payment {payment.id} is already fully paid")
            return ObligationRef(full.id, None, payment.final_amount)

        installments = sorted(payment.installments, key=lambda item: item.installment_number)
        for installment in installments:
            if not installment.is_paid:
                return ObligationRef(installment.id, installment.installment_number, installment.amount)

        if len(installments) >= REQUIRED_INSTALLMENTS:
            raise ObligationError(f"All installments of payment {payment.id} are already paid")

        first, _ = split_installments(payment.final_amount)
        number = len(installments) + 1
        amount = first if number == 1 else payment.final_amount - installments[0].amount
        installment = InstallmentPayment(payment_id=payment.id, installment_number=number, amount=amount)
        self.db.add(installment)
        self.db.commit()
        self.db.refresh(installment)
        return ObligationRef(installment.id, number, amount)

    def mark_obligation_paid(
        self,
        payment_id: str,
        payment_type: Optional[str],
        reference_id: Optional[str],
        installment_number: Optional[int],
        payment_mode: str = PaymentMode.PAYMENT_LINK.value,
        transaction_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> LedgerResult:
        """Flip the matching sub-record to paid and recompute the payment status.

        A sub-record that is already paid is left untouched (no re-dating)
        and no notification is sent.
        """
        payment = self.get_payment(payment_id, for_update=True)
        if payment_type and payment_type != payment.payment_type:
            logger.warning(
                "Transaction says %s but payment %s is %s; using the stored type",
                payment_type, payment_id, payment.payment_type,
            )

        values = {
            "is_paid": True,
            "payment_mode": payment_mode,
            "payment_date": format_payment_date(paid_at or datetime.utcnow()),
            "updated_at": datetime.utcnow(),
        }

        if payment.payment_type == PaymentType.FULL_PAYMENT.value:
            if payment.full_payment is None:
                self.db.add(FullPayment(payment_id=payment.id, is_paid=False))
                self.db.flush()
            stmt = (
                update(FullPayment)
                .where(FullPayment.payment_id == payment.id, FullPayment.is_paid.is_(False))
                .values(**values)
            )
        else:
            target = self._find_installment(payment, reference_id, installment_number)
            stmt = (
                update(InstallmentPayment)
                .where(InstallmentPayment.id == target.id, InstallmentPayment.is_paid.is_(False))
                .values(**values)
            )

        changed = self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1
        self._recompute(payment)
        self.db.commit()
        self.db.refresh(payment)

        if changed:
            logger.info(
                "Payment %s obligation (installment %s) marked paid via %s; status %s",
                payment.id, installment_number, payment_mode, payment.payment_status,
            )
            if transaction_id:
                self._notify(transaction_id)
        else:
            logger.info("Payment %s obligation already paid, no change", payment.id)

        return LedgerResult(payment, changed)

    def _find_installment(
        self, payment: Payment, reference_id: Optional[str], installment_number: Optional[int],
    ) -> InstallmentPayment:
        query = self.db.query(InstallmentPayment).filter(InstallmentPayment.payment_id == payment.id)
        target = None
        if reference_id:
            target = query.filter(InstallmentPayment.id == reference_id).first()
        if target is None and installment_number is not None:
            target = query.filter(InstallmentPayment.installment_number == installment_number).first()
        if target is None:
            raise ObligationError(
                f"No installment for payment {payment.id} (reference {reference_id}, number {installment_number})"
            )
        return target

    def _recompute(self, payment: Payment) -> None:
        if payment.payment_type == PaymentType.FULL_PAYMENT.value:
            row = self.db.query(FullPayment.is_paid).filter(FullPayment.payment_id == payment.id).first()
            status = derive_payment_status(payment.payment_type, full_paid=bool(row and row.is_paid))
        else:
            flags = [
                bool(row.is_paid)
                for row in self.db.query(InstallmentPayment.is_paid)
                .filter(InstallmentPayment.payment_id == payment.id)
                .all()
            ]
            status = derive_payment_status(payment.payment_type, installment_flags=flags)

        if payment.payment_status != status.value:
            payment.payment_status = status.value
            payment.updated_at = datetime.utcnow()

    def _notify(self, transaction_id: str) -> None:
        try:
            self.dispatcher.notify(transaction_id)
        except Exception:
            logger.exception("Notification dispatch failed for transaction %s", transaction_id)
