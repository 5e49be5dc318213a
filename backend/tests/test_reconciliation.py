"""Tests for the expiry check and the pending-transaction sweep."""

from datetime import datetime, timedelta

from payrecon.config import get_settings
from payrecon.gateways.base import Err, Ok
from payrecon.models.enums import Gateway, TransactionStatus
from payrecon.services.audit_service import AuditService
from payrecon.services.event_processor import PaymentEventProcessor
from payrecon.services.reconciliation import LinkCheckOutcome, Reconciler
from payrecon.services.transaction_store import TransactionStore

from conftest import gateway_event, paid_result, register_link, stub_adapter


def _reconciler(db, ledger, adapter, gateway=Gateway.RAZORPAY):
    return Reconciler(db, {gateway: adapter}, processor=PaymentEventProcessor(db, ledger))


def _age(db, txn, minutes):
    txn.created_at = datetime.utcnow() - timedelta(minutes=minutes)
    db.commit()


class TestExpiryCheck:
    def test_link_expired_cancels_transaction(self, db, ledger, payment_service, full_payment):
        """Expired at the gateway: transaction CANCELLED, payment stays PENDING."""
        txn = register_link(payment_service, full_payment, "plink_1").transaction
        adapter = stub_adapter(Ok(gateway_event("plink_1", TransactionStatus.CANCELLED, link_status="expired")))

        outcome = _reconciler(db, ledger, adapter).check_link_at_expiry("plink_1")

        db.refresh(txn)
        db.refresh(full_payment)
        assert outcome == LinkCheckOutcome.RECONCILED
        assert txn.transaction_status == "CANCELLED"
        assert full_payment.payment_status == "PENDING"
        assert [entry.action for entry in AuditService.get_trail(db, txn.id)][-1] == "EXPIRED_CANCELLED"

    def test_link_paid_recovers_missed_webhook(self, db, ledger, dispatcher, payment_service, full_payment):
        """Paid at the gateway but no webhook arrived: SUCCESS and payment updated."""
        txn = register_link(payment_service, full_payment, "plink_1").transaction

        outcome = _reconciler(db, ledger, stub_adapter(paid_result("plink_1"))).check_link_at_expiry("plink_1")

        db.refresh(txn)
        db.refresh(full_payment)
        assert outcome == LinkCheckOutcome.RECONCILED
        assert txn.transaction_status == "SUCCESS"
        assert full_payment.payment_status == "FULLY_PAID"
        assert full_payment.full_payment.is_paid is True
        dispatcher.notify.assert_called_once_with(txn.id)
        assert AuditService.get_trail(db, txn.id)[-1].action == "RECONCILED_PAID"

    def test_query_error_fails_safe_to_cancelled(self, db, ledger, payment_service, full_payment):
        txn = register_link(payment_service, full_payment, "plink_1").transaction
        adapter = stub_adapter(Err("timeout calling /v1/payment_links/plink_1", query_failed=True))

        outcome = _reconciler(db, ledger, adapter).check_link_at_expiry("plink_1")

        db.refresh(txn)
        assert outcome == LinkCheckOutcome.FAILSAFE_CANCELLED
        assert txn.transaction_status == "CANCELLED"
        assert "Expiry verification failed" in txn.txn_metadata["response"]["responseMessage"]
        assert AuditService.get_trail(db, txn.id)[-1].action == "FAILSAFE_CANCELLED"

    def test_missing_adapter_fails_safe(self, db, ledger, payment_service, full_payment):
        txn = register_link(payment_service, full_payment, "plink_1", gateway=Gateway.PHONEPE).transaction
        outcome = _reconciler(db, ledger, stub_adapter(paid_result("plink_1"))).check_link_at_expiry("plink_1")
        db.refresh(txn)
        assert outcome == LinkCheckOutcome.FAILSAFE_CANCELLED
        assert txn.transaction_status == "CANCELLED"

    def test_still_active_is_no_op(self, db, ledger, payment_service, full_payment):
        txn = register_link(payment_service, full_payment, "plink_1").transaction
        adapter = stub_adapter(Ok(gateway_event("plink_1", TransactionStatus.PENDING, link_status="created")))

        outcome = _reconciler(db, ledger, adapter).check_link_at_expiry("plink_1")

        db.refresh(txn)
        assert outcome == LinkCheckOutcome.STILL_ACTIVE
        assert txn.transaction_status == "PENDING"

    def test_terminal_transaction_not_queried(self, db, ledger, payment_service, full_payment):
        register_link(payment_service, full_payment, "plink_1")
        TransactionStore.apply_gateway_event(db, gateway_event("plink_1"))
        adapter = stub_adapter(paid_result("plink_1"))

        outcome = _reconciler(db, ledger, adapter).check_link_at_expiry("plink_1")

        assert outcome == LinkCheckOutcome.ALREADY_TERMINAL
        adapter.fetch_status.assert_not_called()

    def test_missing_transaction_is_no_op(self, db, ledger):
        adapter = stub_adapter(paid_result("plink_x"))
        assert _reconciler(db, ledger, adapter).check_link_at_expiry("plink_x") == LinkCheckOutcome.NOT_FOUND
        adapter.fetch_status.assert_not_called()


class TestSweep:
    def test_only_stale_transactions_swept(self, db, ledger, payment_service, full_payment, installment_payment):
        old = register_link(payment_service, full_payment, "plink_old").transaction
        register_link(payment_service, installment_payment, "plink_fresh")
        _age(db, old, 20)
        adapter = stub_adapter(side_effect=lambda link_id: paid_result(link_id))

        report = _reconciler(db, ledger, adapter).sweep_pending_transactions()

        assert report.total == 1
        assert report.reconciled == 1
        adapter.fetch_status.assert_called_once_with("plink_old")

    def test_outcomes_counted(self, db, ledger, payment_service):
        results = {
            "plink_paid": paid_result("plink_paid"),
            "plink_failed": Ok(gateway_event("plink_failed", TransactionStatus.FAILED)),
            "plink_expired": Ok(gateway_event("plink_expired", TransactionStatus.CANCELLED)),
            "plink_active": Ok(gateway_event("plink_active", TransactionStatus.PENDING)),
            "plink_error": Err("HTTP 503", query_failed=True),
        }
        for link_id in results:
            payment = ledger.create_payment(1000, "FULL_PAYMENT")
            _age(db, register_link(payment_service, payment, link_id).transaction, 30)

        report = _reconciler(db, ledger, stub_adapter(side_effect=results.get)).sweep_pending_transactions()

        assert (report.total, report.reconciled, report.failed, report.cancelled, report.pending, report.errors) == (
            5, 1, 1, 1, 1, 1,
        )
        error_txn = TransactionStore.get_by_link_id(db, "plink_error")
        assert error_txn.transaction_status == "PENDING"

    def test_one_item_raising_does_not_stop_the_rest(self, db, ledger, payment_service):
        for link_id in ("plink_a", "plink_b", "plink_c"):
            payment = ledger.create_payment(1000, "FULL_PAYMENT")
            _age(db, register_link(payment_service, payment, link_id).transaction, 30)

        def fetch(link_id):
            if link_id == "plink_b":
                raise RuntimeError("adapter bug")
            return paid_result(link_id)

        report = _reconciler(db, ledger, stub_adapter(side_effect=fetch)).sweep_pending_transactions()

        assert report.errors == 1
        assert report.reconciled == 2
        assert TransactionStore.get_by_link_id(db, "plink_b").transaction_status == "PENDING"
        assert TransactionStore.get_by_link_id(db, "plink_c").transaction_status == "SUCCESS"

    def test_batch_size_bounds_each_run(self, db, ledger, payment_service):
        batch = get_settings().RECONCILE_BATCH_SIZE
        for index in range(batch + 2):
            payment = ledger.create_payment(1000, "FULL_PAYMENT")
            _age(db, register_link(payment_service, payment, f"plink_{index}").transaction, 30)

        adapter = stub_adapter(side_effect=lambda link_id: Ok(gateway_event(link_id, TransactionStatus.PENDING)))
        report = _reconciler(db, ledger, adapter).sweep_pending_transactions()

        assert report.total == batch
        assert adapter.fetch_status.call_count == batch

    def test_fully_paid_payment_stays_paid(self, db, ledger, dispatcher, payment_service, full_payment):
        """A late sweep on an already-settled transaction changes nothing."""
        txn = register_link(payment_service, full_payment, "plink_1").transaction
        _age(db, txn, 30)
        _reconciler(db, ledger, stub_adapter(paid_result("plink_1"))).sweep_pending_transactions()
        report = _reconciler(db, ledger, stub_adapter(paid_result("plink_1"))).sweep_pending_transactions()

        db.refresh(full_payment)
        assert report.total == 0
        assert full_payment.payment_status == "FULLY_PAID"
        assert dispatcher.notify.call_count == 1

    def test_partially_paid_cashfree_link_leaves_obligation_open(self, db, ledger, dispatcher, payment_service,
                                                                  full_payment):
        txn = register_link(payment_service, full_payment, "cf_link_1", gateway=Gateway.CASHFREE).transaction
        _age(db, txn, 30)
        adapter = stub_adapter(Ok(gateway_event(
            "cf_link_1", gateway=Gateway.CASHFREE, link_status="PARTIALLY_PAID", amount_paid=100000,
        )))

        report = _reconciler(db, ledger, adapter, gateway=Gateway.CASHFREE).sweep_pending_transactions()

        db.refresh(txn)
        db.refresh(full_payment)
        assert report.reconciled == 1
        assert txn.transaction_status == "SUCCESS"
        assert full_payment.payment_status == "PENDING"
        assert full_payment.full_payment.is_paid is False
        dispatcher.notify.assert_not_called()
        assert AuditService.get_trail(db, txn.id)[-1].event_metadata["obligationSettled"] is False
