"""
Payment Errors — Taxonomy shared by provider adapters, webhook ingress
and the reconciliation engine.

Each error carries a stable code (for clients), a message that is safe
to show to users, and the HTTP status used when it reaches a
synchronous endpoint. Webhook processing never surfaces them.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for payment subsystem errors."""

    error_code = "PAYMENT_ERROR"
    http_status = 500
    default_user_message = "Payment setup failed. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None, **metadata: Any):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.metadata = metadata

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.user_message,
                "type": self.__class__.__name__,
            },
        }


class ProviderUnavailable(PaymentError):
    """Network or authentication failure talking to a provider, or missing credentials."""

    error_code = "PROVIDER_UNAVAILABLE"
    http_status = 502

    def __init__(self, provider: str, message: str, **metadata: Any):
        super().__init__(f"{provider}: {message}", **metadata)
        self.provider = provider


class PaymentNotFound(PaymentError):
    """The provider never returned the payment, even after retrying."""

    error_code = "PAYMENT_NOT_FOUND"
    http_status = 404
    default_user_message = "Payment not found."

    def __init__(self, provider: str, payment_id: str, attempts: int = 1):
        super().__init__(f"{provider}: payment {payment_id} not found after {attempts} attempt(s)")
        self.provider = provider
        self.payment_id = payment_id
        self.attempts = attempts


class CaptureConflict(PaymentError):
    """The order is not in a capturable state (e.g. never approved by the payer)."""

    error_code = "CAPTURE_CONFLICT"
    http_status = 400
    default_user_message = "The payment has not been approved yet. Please complete the checkout."

    def __init__(self, provider: str, order_id: str, status: Optional[str]):
        super().__init__(f"{provider}: order {order_id} is not capturable (status={status})")
        self.provider = provider
        self.order_id = order_id
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["error"]["status"] = self.status
        return body


class SignatureInvalid(PaymentError):
    """A webhook failed its authenticity check. Logged and dropped, never surfaced."""

    error_code = "SIGNATURE_INVALID"
    http_status = 400

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: webhook signature rejected ({reason})")
        self.provider = provider
        self.reason = reason


class UserNotFound(PaymentError):
    """The user attributed by a provider callback does not exist (orphaned payment)."""

    error_code = "USER_NOT_FOUND"
    http_status = 404
    default_user_message = "User not found."

    def __init__(self, user_id: Optional[str]):
        super().__init__(f"user {user_id!r} not found")
        self.user_id = user_id
