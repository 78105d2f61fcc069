"""
MercadoPago Service — Checkout Pro preferences and payment lookups.

MercadoPago collects funds when the payer approves, so there is no
separate capture call: "capture" re-reads the payment. A payment counts
as final only when status is "approved" AND status_detail is
"accredited"; some approved states are still reversible.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from lovepages.config import Settings
from lovepages.exceptions import ProviderUnavailable, SignatureInvalid
from lovepages.schemas.schemas import (
    IntentResult, PayerInfo, PaymentProvider, PaymentRecordData, WebhookEvent, WebhookEventKind,
)
from lovepages.services.provider_base import ProviderAdapter, logger
from lovepages.utils.hashing import hmac_sha256_hex, signatures_match

FINAL_STATUS = "approved"
FINAL_STATUS_DETAIL = "accredited"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class MercadoPagoService(ProviderAdapter):
    """Adapter for the MercadoPago REST API (preferences + payments)."""

    provider = PaymentProvider.MERCADOPAGO

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None):
        super().__init__(settings, http_client)
        self.access_token = self.settings.MERCADOPAGO_ACCESS_TOKEN
        if not self.access_token:
            raise ProviderUnavailable(self.name, "MERCADOPAGO_ACCESS_TOKEN is not configured")
        self.base_url = self.settings.MERCADOPAGO_API_URL.rstrip("/")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def create_intent(self, user) -> IntentResult:
        """Create a single-item PRO preference tagged with the user id."""
        names = (user.display_name or "").split()
        frontend = self.settings.FRONTEND_URL.rstrip("/")
        preference = {
            "items": [
                {
                    "id": "pro-plan",
                    "title": "Plan PRO - Unlimited Pages",
                    "description": "Permanent access to unlimited AI-personalized pages",
                    "quantity": 1,
                    "currency_id": self.settings.MERCADOPAGO_CURRENCY,
                    "unit_price": float(self.settings.MERCADOPAGO_PRO_PRICE),
                }
            ],
            "payer": {
                "email": user.email,
                "name": names[0] if names else "User",
                "surname": " ".join(names[1:]) if len(names) > 1 else "",
            },
            "back_urls": {
                "success": f"{frontend}/payment/success",
                "failure": f"{frontend}/payment/failure",
                "pending": f"{frontend}/payment/pending",
            },
            "external_reference": str(user.id),
            "notification_url": f"{self.settings.BACKEND_URL.rstrip('/')}/api/webhooks/mercadopago",
            "statement_descriptor": "LOVEPAGES PRO",
            "payment_methods": {"installments": 1},
            "metadata": {"user_id": str(user.id), "plan": "pro"},
        }

        data = self._request("POST", "/checkout/preferences", json=preference).json()
        logger.info("mercadopago preference created: id=%s user=%s", data.get("id"), user.id)
        return IntentResult(
            provider_order_id=str(data["id"]),
            redirect_url=data.get("init_point") or data.get("sandbox_init_point") or "",
            sandbox_url=data.get("sandbox_init_point"),
        )

    def fetch_intent_status(self, provider_id: str) -> Dict[str, Any]:
        return self._lookup(f"/v1/payments/{provider_id}", provider_id)

    def capture(self, provider_id: str, current: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        # Funds are collected on approval; confirming is a read of the payment
        if current is not None:
            return current
        return self.fetch_intent_status(provider_id)

    def is_final_success(self, raw: Dict[str, Any]) -> bool:
        return raw.get("status") == FINAL_STATUS and raw.get("status_detail") == FINAL_STATUS_DETAIL

    def owner_id(self, raw: Dict[str, Any]) -> Optional[str]:
        ref = raw.get("external_reference") or (raw.get("metadata") or {}).get("user_id")
        return str(ref) if ref else None

    def normalize(self, raw: Dict[str, Any]) -> PaymentRecordData:
        payer = raw.get("payer") or {}
        order = raw.get("order") or {}
        date = _parse_datetime(raw.get("date_approved")) or _parse_datetime(raw.get("date_created")) or datetime.utcnow()
        return PaymentRecordData(
            payment_id=str(raw["id"]),
            provider_order_id=str(order["id"]) if order.get("id") else None,
            provider=self.provider,
            amount=Decimal(str(raw.get("transaction_amount") or 0)),
            currency=raw.get("currency_id") or self.settings.MERCADOPAGO_CURRENCY,
            status=raw.get("status") or "unknown",
            status_detail=raw.get("status_detail"),
            payment_method=raw.get("payment_method_id"),
            payment_type=raw.get("payment_type_id"),
            payer=PayerInfo(
                email=payer.get("email"),
                name=payer.get("first_name"),
                payer_id=str(payer["id"]) if payer.get("id") else None,
            ) if payer else None,
            date=date,
        )

    def parse_webhook(self, body: Dict[str, Any], query: Mapping[str, str]) -> WebhookEvent:
        """
        Normalize both notification formats:
        - v2 body: {"action": "payment.updated", "type": "payment", "data": {"id": ...}}
        - legacy IPN query string: ?topic=payment&id=...
        """
        if body.get("action") or body.get("type") or body.get("topic"):
            action = body.get("action")
            kind_type = body.get("type") or body.get("topic")
            resource_id = (body.get("data") or {}).get("id") or query.get("data.id") or query.get("id")
        elif query.get("topic") or query.get("type"):
            action = None
            kind_type = query.get("topic") or query.get("type")
            resource_id = query.get("id") or query.get("data.id")
        else:
            return self._ignore(None, "unrecognized notification format")

        raw_type = action or kind_type
        if action == "payment.created":
            # Exists but has not resolved yet; the matching payment.updated will follow
            return self._ignore(raw_type, "payment created, not yet final")
        is_payment = action == "payment.updated" or (not action and kind_type == "payment")
        if not is_payment:
            return self._ignore(raw_type, f"not a payment notification: {raw_type}")
        if not resource_id:
            return self._ignore(raw_type, "payment notification without id")

        return WebhookEvent(
            provider=self.provider,
            kind=WebhookEventKind.PAYMENT_MAY_BE_FINAL,
            resource_id=str(resource_id),
            raw_type=raw_type,
        )

    def verify_webhook(
        self, headers: Mapping[str, str], raw_body: bytes, body: Dict[str, Any], query: Mapping[str, str]
    ) -> None:
        """
        Check x-signature when a webhook secret is configured.

        Manifest: "id:{data.id};request-id:{x-request-id};ts:{ts};" signed with
        HMAC-SHA256. Without a secret the check is skipped; the payment state
        is always re-fetched from the API before anything is granted.
        """
        secret = self.settings.MERCADOPAGO_WEBHOOK_SECRET
        if not secret:
            return

        x_signature = headers.get("x-signature")
        x_request_id = headers.get("x-request-id")
        if not x_signature or not x_request_id:
            raise SignatureInvalid(self.name, "missing x-signature or x-request-id")

        parts = dict(p.strip().split("=", 1) for p in x_signature.split(",") if "=" in p)
        ts, v1 = parts.get("ts"), parts.get("v1")
        if not ts or not v1:
            raise SignatureInvalid(self.name, "malformed x-signature")

        data_id = query.get("data.id") or (body.get("data") or {}).get("id") or ""
        manifest = f"id:{data_id};request-id:{x_request_id};ts:{ts};"
        if not signatures_match(hmac_sha256_hex(secret, manifest), v1):
            raise SignatureInvalid(self.name, "signature mismatch")

    def _ignore(self, raw_type: Optional[str], reason: str) -> WebhookEvent:
        return WebhookEvent(provider=self.provider, kind=WebhookEventKind.IGNORE, raw_type=raw_type, reason=reason)
