from lovepages.models.user import User
from lovepages.models.payment import PaymentRecord
from lovepages.models.audit import AuditLog

__all__ = ["User", "PaymentRecord", "AuditLog"]
