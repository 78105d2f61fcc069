"""
Audit Service — Manages the hash-chained trail of payment events.
"""
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from lovepages.models.audit import AuditLog
from lovepages.utils.hashing import generate_hash, generate_chain_hash
from lovepages.utils.locks import KeyedLock

# One writer per chain: each entry links to the one committed before it
_chain_locks = KeyedLock()


class AuditService:
    """Creates tamper-evident audit entries, chained per user."""

    @staticmethod
    def _chain_filter(query, user_id: Optional[str]):
        if user_id is None:
            return query.filter(AuditLog.user_id.is_(None))
        return query.filter(AuditLog.user_id == user_id)

    @staticmethod
    def log(
        db: Session,
        user_id: Optional[str],
        action: str,
        provider: Optional[str] = None,
        payload: Optional[Dict] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Create an audit log entry linked to the user's previous entry.

        Args:
            db: Database session.
            user_id: User the event belongs to; None for unattributable events.
            action: Action identifier (e.g. PAYMENT_RECONCILED, WEBHOOK_REJECTED).
            provider: Payment provider name.
            payload: Data payload to hash.
            metadata: Additional metadata to store.
        """
        payload_data = payload or {}
        with _chain_locks.hold(user_id or ""):
            last_entry = (
                AuditService._chain_filter(db.query(AuditLog), user_id)
                .order_by(AuditLog.id.desc())
                .first()
            )
            previous_hash = last_entry.payload_hash if last_entry else ""

            entry = AuditLog(
                user_id=user_id,
                action=action,
                provider=provider,
                payload_hash=generate_chain_hash(payload_data, previous_hash),
                previous_hash=previous_hash,
                log_metadata={**(metadata or {}), "payload_digest": generate_hash(payload_data)},
                timestamp=datetime.utcnow(),
            )
            db.add(entry)
            db.commit()

        db.refresh(entry)
        return entry

    @staticmethod
    def get_trail(db: Session, user_id: Optional[str]) -> list:
        """Full audit trail for a user, oldest first."""
        return (
            AuditService._chain_filter(db.query(AuditLog), user_id)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, user_id: Optional[str]) -> dict:
        """Verify the integrity of a user's audit chain.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, user_id)
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
