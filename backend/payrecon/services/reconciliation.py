"""
Reconciliation Scheduler — Recovers from lost webhooks by asking the gateway.

Two entry points, both feeding the same idempotent event path as webhooks:

- check_link_at_expiry: fires once per issued link at its expiry time. If the
  gateway cannot be asked (timeout, HTTP error, unreadable response), the
  transaction is closed CANCELLED rather than left PENDING forever.
- sweep_pending_transactions: periodic pass over old PENDING transactions.
  Items are processed one at a time and a failure on one never stops the
  rest; query errors leave the transaction PENDING for the next sweep.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from sqlalchemy.orm import Session

from payrecon.config import Settings, get_settings
from payrecon.gateways import get_adapters
from payrecon.gateways.base import Err, GatewayAdapter, GatewayResult
from payrecon.models.enums import Gateway, TransactionStatus
from payrecon.models.transaction import Transaction
from payrecon.services.audit_service import AuditService
from payrecon.services.event_processor import PaymentEventProcessor, SCHEDULER_SOURCE
from payrecon.services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class LinkCheckOutcome(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    RECONCILED = "RECONCILED"             # Gateway reported a terminal status, applied
    STILL_ACTIVE = "STILL_ACTIVE"
    FAILSAFE_CANCELLED = "FAILSAFE_CANCELLED"


@dataclass
class SweepReport:
    total: int = 0
    reconciled: int = 0
    failed: int = 0
    cancelled: int = 0
    pending: int = 0
    errors: int = 0


class Reconciler:
    def __init__(
        self,
        db: Session,
        adapters: Optional[Dict[Gateway, GatewayAdapter]] = None,
        settings: Optional[Settings] = None,
        processor: Optional[PaymentEventProcessor] = None,
    ):
        self.db = db
        self.adapters = adapters if adapters is not None else get_adapters()
        self.settings = settings or get_settings()
        self.processor = processor or PaymentEventProcessor(db)

    # ─── Per-link expiry check ───

    def check_link_at_expiry(self, payment_link_id: str) -> LinkCheckOutcome:
        txn = TransactionStore.get_by_link_id(self.db, payment_link_id)
        if not txn:
            logger.warning("Expiry check: no transaction for link %s", payment_link_id)
            return LinkCheckOutcome.NOT_FOUND

        if txn.transaction_status != TransactionStatus.PENDING.value:
            logger.info("Expiry check: transaction %s already %s", txn.id, txn.transaction_status)
            return LinkCheckOutcome.ALREADY_TERMINAL

        result = self._fetch(txn)
        if isinstance(result, Err):
            return self._failsafe_cancel(txn, result.reason)

        event = result.event
        if event.status == TransactionStatus.PENDING:
            logger.info("Expiry check: link %s still active at gateway", payment_link_id)
            return LinkCheckOutcome.STILL_ACTIVE

        self.processor.process(event, SCHEDULER_SOURCE)
        return LinkCheckOutcome.RECONCILED

    def _failsafe_cancel(self, txn: Transaction, reason: str) -> LinkCheckOutcome:
        logger.warning("Expiry check for link %s failed (%s); cancelling transaction %s",
                       txn.payment_link_id, reason, txn.id)
        if TransactionStore.mark_cancelled(self.db, txn, f"Expiry verification failed: {reason}"):
            AuditService.log(
                self.db, txn.id, "FAILSAFE_CANCELLED", SCHEDULER_SOURCE,
                payload={"externalId": txn.payment_link_id, "reason": reason},
            )
            return LinkCheckOutcome.FAILSAFE_CANCELLED
        return LinkCheckOutcome.ALREADY_TERMINAL

    # ─── Periodic sweep ───

    def sweep_pending_transactions(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=self.settings.RECONCILE_STALE_MINUTES)
        stale = TransactionStore.find_stale_pending(self.db, cutoff, self.settings.RECONCILE_BATCH_SIZE)
        # Plain values so one item's rollback cannot expire the others
        items = [(txn.id, txn.payment_link_id) for txn in stale]

        report = SweepReport(total=len(items))
        for transaction_id, link_id in items:
            try:
                self._sweep_one(transaction_id, link_id, report)
            except Exception:
                self.db.rollback()
                report.errors += 1
                logger.exception("Sweep failed for transaction %s (link %s)", transaction_id, link_id)

        logger.info(
            "Sweep done: %d checked, %d reconciled, %d failed, %d cancelled, %d pending, %d errors",
            report.total, report.reconciled, report.failed, report.cancelled, report.pending, report.errors,
        )
        return report

    def _sweep_one(self, transaction_id: str, link_id: str, report: SweepReport) -> None:
        txn = TransactionStore.get(self.db, transaction_id)
        if not txn or txn.transaction_status != TransactionStatus.PENDING.value:
            return

        result = self._fetch(txn)
        if isinstance(result, Err):
            report.errors += 1
            logger.warning("Sweep: status query for link %s failed: %s", link_id, result.reason)
            return

        event = result.event
        if event.status == TransactionStatus.PENDING:
            report.pending += 1
            return

        self.processor.process(event, SCHEDULER_SOURCE)
        if event.status == TransactionStatus.SUCCESS:
            report.reconciled += 1
        elif event.status == TransactionStatus.FAILED:
            report.failed += 1
        else:
            report.cancelled += 1

    def _fetch(self, txn: Transaction) -> GatewayResult:
        try:
            adapter = self.adapters[Gateway(txn.payment_gateway)]
        except (KeyError, ValueError):
            return Err(f"No adapter for gateway {txn.payment_gateway!r}", query_failed=True)
        return adapter.fetch_status(txn.payment_link_id)
