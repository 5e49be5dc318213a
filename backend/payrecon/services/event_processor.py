"""
Payment Event Processor — The single path from a normalized gateway event to
Transaction, Payment and audit state. Webhooks and the reconciliation
scheduler both go through here.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from payrecon.gateways.base import GatewayEvent
from payrecon.gateways.cashfree import link_settles
from payrecon.models.enums import Gateway, TransactionStatus
from payrecon.models.transaction import Transaction
from payrecon.schemas.metadata import TransactionMetadata
from payrecon.services.audit_service import AuditService
from payrecon.services.payment_ledger import PaymentLedger
from payrecon.services.transaction_store import ApplyOutcome, TransactionStore

logger = logging.getLogger(__name__)

SCHEDULER_SOURCE = "SCHEDULER"

WEBHOOK_ACTIONS = {
    ApplyOutcome.APPLIED: "WEBHOOK_APPLIED",
    ApplyOutcome.DUPLICATE: "WEBHOOK_DUPLICATE",
    ApplyOutcome.ALREADY_TERMINAL: "WEBHOOK_LATE",
    ApplyOutcome.STILL_PENDING: "WEBHOOK_PENDING",
    ApplyOutcome.OBLIGATION_SATISFIED: "OBLIGATION_SATISFIED",
}

RECONCILED_ACTIONS = {
    TransactionStatus.SUCCESS: "RECONCILED_PAID",
    TransactionStatus.FAILED: "RECONCILED_FAILED",
    TransactionStatus.CANCELLED: "EXPIRED_CANCELLED",
}


@dataclass
class ProcessResult:
    outcome: ApplyOutcome
    transaction: Transaction
    ledger_changed: bool = False


class PaymentEventProcessor:
    def __init__(self, db: Session, ledger: PaymentLedger = None):
        self.db = db
        self.ledger = ledger or PaymentLedger(db)

    def process(self, event: GatewayEvent, source: str) -> ProcessResult:
        """Apply an event: guarded status write, then ledger, then audit.

        Raises:
            TransactionNotFound: the event does not correlate to a live transaction.
        """
        applied = TransactionStore.apply_gateway_event(self.db, event)
        txn = applied.transaction

        ledger_changed = False
        settled = True
        # Re-running the ledger on a duplicate SUCCESS repairs a crash between the two commits
        if txn.transaction_status == TransactionStatus.SUCCESS.value and applied.outcome in (
            ApplyOutcome.APPLIED, ApplyOutcome.DUPLICATE,
        ):
            settled = self._settles_obligation(event, txn)
            if settled:
                ledger_changed = self._mark_paid(txn)
                if applied.outcome == ApplyOutcome.DUPLICATE and ledger_changed:
                    logger.warning("Ledger repaired for transaction %s on duplicate delivery", txn.id)
            else:
                logger.error(
                    "Partial payment on %s link %s (paid %s of %s paise); obligation of transaction %s left open for review",
                    event.gateway.value, event.external_id, event.amount_paid, txn.amount, txn.id,
                )

        action = self._audit_action(applied.outcome, event, source)
        if action:
            AuditService.log(
                self.db, txn.id, action, source,
                payload={
                    "status": event.status.value,
                    "externalId": event.external_id,
                    "gatewayTxnId": event.gateway_txn_id,
                    "linkStatus": event.link_status,
                },
                metadata={
                    "outcome": applied.outcome.value,
                    "transactionStatus": txn.transaction_status,
                    "ledgerChanged": ledger_changed,
                    "obligationSettled": settled,
                    "amountPaid": event.amount_paid,
                },
            )

        logger.info(
            "%s event %s for transaction %s (%s): %s",
            source, event.status.value, txn.id, event.external_id, applied.outcome.value,
        )
        return ProcessResult(applied.outcome, txn, ledger_changed)

    @staticmethod
    def _settles_obligation(event: GatewayEvent, txn: Transaction) -> bool:
        if event.gateway == Gateway.CASHFREE:
            return link_settles(event.link_status, event.amount_paid, txn.amount)
        return True

    def _mark_paid(self, txn: Transaction) -> bool:
        metadata = TransactionMetadata.load(txn.txn_metadata)
        result = self.ledger.mark_obligation_paid(
            txn.payment_id,
            metadata.payment_type,
            metadata.reference_id,
            txn.installment_number,
            payment_mode=txn.payment_mode,
            transaction_id=txn.id,
            paid_at=txn.txn_date,
        )
        return result.changed

    @staticmethod
    def _audit_action(outcome: ApplyOutcome, event: GatewayEvent, source: str):
        if source != SCHEDULER_SOURCE:
            return WEBHOOK_ACTIONS[outcome]
        if outcome == ApplyOutcome.APPLIED:
            return RECONCILED_ACTIONS[event.status]
        if outcome == ApplyOutcome.OBLIGATION_SATISFIED:
            return "OBLIGATION_SATISFIED"
        if outcome in (ApplyOutcome.DUPLICATE, ApplyOutcome.ALREADY_TERMINAL):
            return "RECONCILE_NOOP"
        return None
