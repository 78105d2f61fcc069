"""
Entitlement Store — users, their payment history and the PRO flag.

append_payment_and_activate() is the only write that grants PRO. The
check-then-append runs under a per-user lock, on a row read FOR UPDATE,
and the (provider, payment_id) unique constraint backs both up across
processes.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lovepages.models.payment import PaymentRecord
from lovepages.models.user import User
from lovepages.schemas.schemas import PaymentRecordData
from lovepages.utils.locks import KeyedLock
from lovepages.utils.logger import get_logger

logger = get_logger("lovepages.entitlements", "payments.log")

_user_locks = KeyedLock()


class EntitlementStore:
    def __init__(self, db: Session):
        self.db = db

    def find_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == str(user_id)).first()

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def create_user(self, email: str, display_name: str) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email.strip().lower(),
            display_name=display_name.strip(),
            is_pro=False,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("user created: %s", user.id)
        return user

    def append_payment_and_activate(
        self, user_id: str, record: PaymentRecordData, only_if_absent: bool = True
    ) -> bool:
        """
        Append `record` to the user's history and set PRO, in one transaction.

        Returns False when the payment (by payment id or order id) is already
        recorded and nothing was written. Raises LookupError for an unknown
        user; other persistence failures roll back and propagate.
        """
        with _user_locks.hold(str(user_id)):
            try:
                user = (
                    self.db.query(User)
                    .filter(User.id == str(user_id))
                    .with_for_update()
                    .populate_existing()
                    .first()
                )
                if user is None:
                    raise LookupError(user_id)

                if only_if_absent and user.has_payment(*record.identifiers()):
                    self.db.rollback()
                    return False

                payer = record.payer
                user.payments.append(PaymentRecord(
                    provider=record.provider.value,
                    payment_id=record.payment_id,
                    provider_order_id=record.provider_order_id,
                    amount=record.amount,
                    currency=record.currency,
                    status=record.status,
                    status_detail=record.status_detail,
                    payment_method=record.payment_method,
                    payment_type=record.payment_type,
                    payer_email=payer.email if payer else None,
                    payer_name=payer.name if payer else None,
                    payer_id=payer.payer_id if payer else None,
                    paid_at=record.date,
                ))
                user.is_pro = True
                user.pro_expires_at = None
                user.updated_at = datetime.utcnow()
                self.db.commit()
            except IntegrityError:
                # Another process recorded the same provider payment first
                self.db.rollback()
                logger.info("payment %s/%s already recorded (constraint)", record.provider.value, record.payment_id)
                return False
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception("failed to record payment %s for user %s", record.payment_id, user_id)
                raise

        self.db.refresh(user)
        return True
