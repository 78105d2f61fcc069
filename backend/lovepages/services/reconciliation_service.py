"""
Reconciliation Service — the single path from a confirmed payment to PRO.

Webhooks, client-driven capture and simulation all end here; whichever
arrives first grants, every later arrival observes ALREADY_RECONCILED.
"""
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from lovepages.exceptions import UserNotFound
from lovepages.schemas.schemas import PaymentRecordData
from lovepages.services.audit_service import AuditService
from lovepages.services.entitlement_store import EntitlementStore
from lovepages.utils.logger import get_logger

logger = get_logger("lovepages.reconciliation", "payments.log")


class ReconcileOutcome(str, Enum):
    GRANTED = "granted"
    ALREADY_RECONCILED = "already_reconciled"


class ReconcileResult:
    def __init__(self, outcome: ReconcileOutcome, user_id: str, record: PaymentRecordData, source: str):
        self.outcome = outcome
        self.user_id = user_id
        self.record = record
        self.source = source

    @property
    def granted(self) -> bool:
        return self.outcome == ReconcileOutcome.GRANTED

    @property
    def already_processed(self) -> bool:
        return self.outcome == ReconcileOutcome.ALREADY_RECONCILED

    def __repr__(self) -> str:
        return f"<ReconcileResult {self.outcome.value} user={self.user_id} payment={self.record.payment_id}>"


class ReconciliationService:
    """Turns a final-success PaymentRecordData into an entitlement, exactly once."""

    @staticmethod
    def reconcile(
        db: Session,
        user_id: Optional[str],
        record: PaymentRecordData,
        provider: str,
        source: str = "capture",
    ) -> ReconcileResult:
        store = EntitlementStore(db)
        user = store.find_user(user_id)
        if user is None:
            logger.error("orphaned %s payment %s: user %r not found", provider, record.payment_id, user_id)
            AuditService.log(
                db, None, "WEBHOOK_ORPHANED" if source == "webhook" else "PAYMENT_ORPHANED",
                provider=provider,
                payload=record.model_dump(mode="json"),
                metadata={"attributed_user_id": user_id, "payment_id": record.payment_id, "source": source},
            )
            raise UserNotFound(user_id)

        try:
            appended = store.append_payment_and_activate(user.id, record)
        except LookupError as e:
            raise UserNotFound(user_id) from e

        outcome = ReconcileOutcome.GRANTED if appended else ReconcileOutcome.ALREADY_RECONCILED
        action = "PAYMENT_RECONCILED" if appended else "PAYMENT_ALREADY_RECONCILED"
        AuditService.log(
            db, user.id, action,
            provider=provider,
            payload=record.model_dump(mode="json"),
            metadata={
                "payment_id": record.payment_id,
                "provider_order_id": record.provider_order_id,
                "amount": str(record.amount),
                "currency": record.currency,
                "source": source,
            },
        )

        if appended:
            logger.info(
                "PRO granted: user=%s provider=%s payment=%s amount=%s %s via %s",
                user.id, provider, record.payment_id, record.amount, record.currency, source,
            )
        else:
            logger.info(
                "payment %s for user %s already reconciled (via %s)", record.payment_id, user.id, source,
            )
        return ReconcileResult(outcome, user.id, record, source)
