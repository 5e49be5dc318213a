"""Tests for the payment ledger: obligation flips and derived status."""

from datetime import datetime
from itertools import permutations

import pytest

from payrecon.exceptions import ObligationError, PaymentNotFound
from payrecon.models.enums import PaymentStatus
from payrecon.services.payment_ledger import (
    PaymentLedger, derive_payment_status, split_installments,
)


class TestDerivePaymentStatus:
    """Status is a pure function of the sub-record flags."""

    def test_full_payment(self):
        assert derive_payment_status("FULL_PAYMENT", full_paid=False) == PaymentStatus.PENDING
        assert derive_payment_status("FULL_PAYMENT", full_paid=True) == PaymentStatus.FULLY_PAID

    @pytest.mark.parametrize("flags,expected", [
        ([], PaymentStatus.PENDING),
        ([False, False], PaymentStatus.PENDING),
        ([True, False], PaymentStatus.PARTIALLY_PAID),
        ([False, True], PaymentStatus.PARTIALLY_PAID),
        ([True, True], PaymentStatus.FULLY_PAID),
        ([True], PaymentStatus.PARTIALLY_PAID),
    ])
    def test_installments(self, flags, expected):
        assert derive_payment_status("INSTALLMENTS", installment_flags=flags) == expected


class TestSplitInstallments:
    @pytest.mark.parametrize("total,expected", [(1000, (500, 500)), (1001, (501, 500)), (1, (1, 0))])
    def test_first_is_ceil_half(self, total, expected):
        assert split_installments(total) == expected


class TestCreatePayment:
    def test_full_payment_sub_record(self, full_payment):
        assert full_payment.payment_status == "PENDING"
        assert full_payment.full_payment is not None
        assert full_payment.full_payment.is_paid is False
        assert full_payment.installments == []

    def test_installment_sub_records(self, installment_payment):
        amounts = [(item.installment_number, item.amount) for item in installment_payment.installments]
        assert amounts == [(1, 250001), (2, 250000)]


class TestMarkObligationPaid:
    def test_full_payment_paid(self, ledger, dispatcher, full_payment):
        result = ledger.mark_obligation_paid(
            full_payment.id, "FULL_PAYMENT", full_payment.full_payment.id, None,
            payment_mode="PAYMENT_LINK", transaction_id="txn-1", paid_at=datetime(2025, 10, 1, 9, 30),
        )

        assert result.changed is True
        assert result.payment.payment_status == "FULLY_PAID"
        assert result.payment.full_payment.payment_date == "20251001"
        assert result.payment.full_payment.payment_mode == "PAYMENT_LINK"
        dispatcher.notify.assert_called_once_with("txn-1")

    def test_already_paid_is_idempotent(self, ledger, dispatcher, full_payment):
        ledger.mark_obligation_paid(full_payment.id, "FULL_PAYMENT", None, None,
                                    transaction_id="txn-1", paid_at=datetime(2025, 10, 1))
        result = ledger.mark_obligation_paid(full_payment.id, "FULL_PAYMENT", None, None,
                                             payment_mode="CASH", transaction_id="txn-1",
                                             paid_at=datetime(2025, 12, 31))

        assert result.changed is False
        assert result.payment.full_payment.payment_date == "20251001"
        assert result.payment.full_payment.payment_mode == "PAYMENT_LINK"
        assert dispatcher.notify.call_count == 1

    def test_installment_by_reference(self, ledger, installment_payment):
        second = installment_payment.installments[1]
        result = ledger.mark_obligation_paid(installment_payment.id, "INSTALLMENTS", second.id, None)

        assert result.payment.payment_status == "PARTIALLY_PAID"
        assert [item.is_paid for item in result.payment.installments] == [False, True]

    def test_installment_falls_back_to_number(self, ledger, installment_payment):
        result = ledger.mark_obligation_paid(installment_payment.id, "INSTALLMENTS", "stale-ref", 1)
        assert [item.is_paid for item in result.payment.installments] == [True, False]

    def test_unknown_installment_raises(self, ledger, installment_payment):
        with pytest.raises(ObligationError):
            ledger.mark_obligation_paid(installment_payment.id, "INSTALLMENTS", None, 3)

    def test_unknown_payment_raises(self, ledger):
        with pytest.raises(PaymentNotFound):
            ledger.mark_obligation_paid("missing", "FULL_PAYMENT", None, None)

    def test_dispatcher_failure_keeps_ledger_state(self, ledger, dispatcher, full_payment):
        dispatcher.notify.side_effect = RuntimeError("queue down")
        result = ledger.mark_obligation_paid(full_payment.id, "FULL_PAYMENT", None, None, transaction_id="txn-1")
        assert result.changed is True
        assert result.payment.payment_status == "FULLY_PAID"

    @pytest.mark.parametrize("order", list(permutations([1, 2, 1, 2])))
    def test_any_event_order_converges(self, db, dispatcher, order):
        ledger = PaymentLedger(db, dispatcher=dispatcher)
        payment = ledger.create_payment(1000, "INSTALLMENTS")
        for number in order:
            ledger.mark_obligation_paid(payment.id, "INSTALLMENTS", None, number, transaction_id=f"txn-{number}")

        db.refresh(payment)
        assert payment.payment_status == "FULLY_PAID"
        assert dispatcher.notify.call_count == 2


class TestPreparePaymentReference:
    def test_full_payment_reference(self, ledger, full_payment):
        reference = ledger.prepare_payment_reference(full_payment)
        assert reference.reference_id == full_payment.full_payment.id
        assert reference.installment_number is None
        assert reference.amount == 500000

    def test_next_unpaid_installment(self, ledger, installment_payment):
        ledger.mark_obligation_paid(installment_payment.id, "INSTALLMENTS", None, 1)
        reference = ledger.prepare_payment_reference(installment_payment)
        assert reference.installment_number == 2
        assert reference.amount == 250000

    def test_missing_installments_created_with_split(self, db, ledger):
        from payrecon.models.payment import Payment

        payment = Payment(payment_type="INSTALLMENTS", payment_status="PENDING", final_amount=999)
        db.add(payment)
        db.commit()

        reference = ledger.prepare_payment_reference(payment)
        assert (reference.installment_number, reference.amount) == (1, 500)

    def test_everything_paid_raises(self, ledger, full_payment):
        ledger.mark_obligation_paid(full_payment.id, "FULL_PAYMENT", None, None)
        with pytest.raises(ObligationError):
            ledger.prepare_payment_reference(full_payment)
