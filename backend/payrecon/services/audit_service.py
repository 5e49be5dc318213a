"""
Audit Service — Hash-chained trail of every event applied to a transaction.
Genuine transitions and idempotent no-ops are stored under distinct actions.
"""
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from payrecon.models.audit import PaymentEvent
from payrecon.utils.hashing import generate_chain_hash


class AuditService:
    """Creates tamper-evident payment event entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        transaction_id: str,
        action: str,
        source: str,
        payload: Optional[Dict] = None,
        metadata: Optional[Dict] = None,
    ) -> PaymentEvent:
        """Append an entry to a transaction's event chain.

        Args:
            db: Database session.
            transaction_id: Transaction this event belongs to.
            action: Action identifier (e.g. WEBHOOK_APPLIED, FAILSAFE_CANCELLED).
            source: Gateway name, SCHEDULER or MANUAL.
            payload: Event data to hash.
            metadata: Additional metadata to store alongside the hash.

        Returns:
            The created PaymentEvent entry.
        """
        last_entry = (
            db.query(PaymentEvent)
            .filter(PaymentEvent.transaction_id == transaction_id)
            .order_by(PaymentEvent.id.desc())
            .first()
        )
        previous_hash = last_entry.payload_hash if last_entry else ""

        payload_data = {"action": action, "source": source, **(payload or {})}
        chain_hash = generate_chain_hash(payload_data, previous_hash)

        entry = PaymentEvent(
            transaction_id=transaction_id,
            action=action,
            source=source,
            payload_hash=chain_hash,
            previous_hash=previous_hash,
            event_metadata=metadata or payload or {},
            timestamp=datetime.utcnow(),
        )

        db.add(entry)
        db.commit()
        db.refresh(entry)

        return entry

    @staticmethod
    def get_trail(db: Session, transaction_id: str) -> list[PaymentEvent]:
        """Get the full event trail for a transaction, ordered chronologically."""
        return (
            db.query(PaymentEvent)
            .filter(PaymentEvent.transaction_id == transaction_id)
            .order_by(PaymentEvent.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, transaction_id: str) -> dict:
        """Verify the integrity of the event chain for a transaction.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, transaction_id)

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
