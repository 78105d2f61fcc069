"""
User Model — Account identity plus the PRO entitlement.
Maps to the 'users' table; payment history lives in 'payments'.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from lovepages.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(128), nullable=False)

    is_pro = Column(Boolean, default=False, nullable=False)
    pro_expires_at = Column(DateTime, nullable=True)   # NULL = perpetual PRO

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments = relationship(
        "PaymentRecord",
        back_populates="user",
        order_by="PaymentRecord.id",
        lazy="selectin",
    )

    def is_pro_active(self) -> bool:
        if not self.is_pro:
            return False
        if self.pro_expires_at is None:
            return True
        return self.pro_expires_at > datetime.utcnow()

    def has_payment(self, *identifiers: str) -> bool:
        """True if any identifier matches a recorded payment or order id."""
        wanted = {str(i) for i in identifiers if i}
        if not wanted:
            return False
        return any(
            p.payment_id in wanted or (p.provider_order_id and p.provider_order_id in wanted)
            for p in self.payments
        )
