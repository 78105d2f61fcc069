"""
Payment Record Model — Append-only history of confirmed PRO payments.
A row exists only once the provider reported the payment as final.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from lovepages.database import Base


class PaymentRecord(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # One row per provider payment; a concurrent duplicate insert fails here
        UniqueConstraint("provider", "payment_id", name="uq_payments_provider_payment"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    provider = Column(String(16), nullable=False)         # mercadopago | paypal | simulation
    payment_id = Column(String(64), nullable=False)        # MP payment id | PayPal capture id
    provider_order_id = Column(String(64), index=True)     # MP order / PayPal order id

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    status = Column(String(24), nullable=False)
    status_detail = Column(String(64))
    payment_method = Column(String(32))
    payment_type = Column(String(32))

    payer_email = Column(String(255))
    payer_name = Column(String(128))
    payer_id = Column(String(64))

    paid_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="payments")
