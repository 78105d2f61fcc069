"""
Audit Log Model — Immutable, tamper-evident trail of payment events.
Every action is SHA-256 hashed and chained per user.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON

from lovepages.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    # No FK: orphaned payments and rejected webhooks have no resolvable user
    user_id = Column(String(36), nullable=True, index=True)

    action = Column(String(50), nullable=False)
    # Actions: INTENT_CREATED, PAYMENT_RECONCILED, PAYMENT_ALREADY_RECONCILED,
    #          CAPTURE_CONFLICT, WEBHOOK_REJECTED, WEBHOOK_ORPHANED, PAYMENT_ORPHANED,
    #          PAYMENT_SIMULATED
    provider = Column(String(16))

    payload_hash = Column(String(64))       # SHA-256 chain hash of the action payload
    previous_hash = Column(String(64))      # Hash chain for tamper detection

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
