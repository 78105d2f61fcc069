"""
PayPal Service — Orders v2 checkout with an explicit capture step.

Order lifecycle: CREATED -> APPROVED (payer approved on PayPal) ->
COMPLETED (captured). Money has moved only when the order is COMPLETED
and its capture record is COMPLETED too; a PENDING capture is not final.
"""
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from lovepages.config import Settings
from lovepages.exceptions import CaptureConflict, PaymentNotFound, ProviderUnavailable, SignatureInvalid
from lovepages.schemas.schemas import (
    IntentResult, PayerInfo, PaymentProvider, PaymentRecordData, WebhookEvent, WebhookEventKind,
)
from lovepages.services.provider_base import ProviderAdapter, logger

CAPTURE_COMPLETED_EVENT = "PAYMENT.CAPTURE.COMPLETED"

SIGNATURE_HEADERS = (
    "paypal-auth-algo",
    "paypal-cert-url",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)

# Refresh the OAuth token this many seconds before PayPal expires it
TOKEN_EXPIRY_MARGIN = 60


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


def first_capture(order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    units = order.get("purchase_units") or []
    if not units:
        return None
    captures = (units[0].get("payments") or {}).get("captures") or []
    return captures[0] if captures else None


def related_order_id(capture: Dict[str, Any]) -> Optional[str]:
    """Order id of a capture resource, from related_ids or its "up" link."""
    related = (capture.get("supplementary_data") or {}).get("related_ids") or {}
    if related.get("order_id"):
        return str(related["order_id"])
    up = next((l for l in capture.get("links") or [] if l.get("rel") == "up"), None)
    if up and up.get("href"):
        return up["href"].rstrip("/").split("/")[-1]
    return None


class PayPalService(ProviderAdapter):
    """Adapter for the PayPal REST API (OAuth, orders, webhook verification)."""

    provider = PaymentProvider.PAYPAL

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None):
        super().__init__(settings, http_client)
        self.client_id = self.settings.PAYPAL_CLIENT_ID
        self.client_secret = self.settings.PAYPAL_CLIENT_SECRET
        if not self.client_id or not self.client_secret:
            raise ProviderUnavailable(self.name, "PayPal credentials are missing")
        self.base_url = self.settings.paypal_base_url
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    # ─── OAuth ────────────────────────────────────────────────────────

    def get_access_token(self) -> str:
        """Client-credentials bearer token, cached until shortly before expiry."""
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token
            try:
                response = self._client.post(
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.client_id, self.client_secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                logger.error("paypal token request failed: %s", e)
                raise ProviderUnavailable(self.name, "could not obtain access token") from e
            if response.status_code != 200:
                logger.error("paypal token request rejected: %s", response.status_code)
                raise ProviderUnavailable(self.name, "authentication rejected", status_code=response.status_code)

            data = response.json()
            self._token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
            self._token_expires_at = time.time() + max(0, expires_in - TOKEN_EXPIRY_MARGIN)
            return self._token

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.get_access_token()}"}

    # ─── Orders ───────────────────────────────────────────────────────

    def create_intent(self, user) -> IntentResult:
        """Create a CAPTURE-intent order for the PRO plan, attributed via custom_id."""
        price = str(self.settings.PAYPAL_PRO_PRICE)
        currency = self.settings.PAYPAL_CURRENCY
        frontend = self.settings.FRONTEND_URL.rstrip("/")
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": str(user.id),
                    "custom_id": str(user.id),
                    "description": "Love Pages PRO - Unlimited Pages",
                    "soft_descriptor": "LOVEPAGES PRO",
                    "amount": {
                        "currency_code": currency,
                        "value": price,
                        "breakdown": {"item_total": {"currency_code": currency, "value": price}},
                    },
                    "items": [
                        {
                            "name": "Love Pages PRO",
                            "description": "Permanent access to unlimited AI pages",
                            "unit_amount": {"currency_code": currency, "value": price},
                            "quantity": "1",
                            "category": "DIGITAL_GOODS",
                        }
                    ],
                }
            ],
            "application_context": {
                "brand_name": "Love Pages",
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                # Return to the capture page, not straight to success
                "return_url": f"{frontend}/payment/paypal-return",
                "cancel_url": f"{frontend}/payment/failure?provider=paypal",
            },
        }

        data = self._request(
            "POST", "/v2/checkout/orders", json=body, headers={"Prefer": "return=representation"}
        ).json()
        links = {link.get("rel"): link.get("href") for link in data.get("links") or []}
        approve_url = links.get("approve") or links.get("payer-action")
        if not approve_url:
            raise ProviderUnavailable(self.name, f"order {data.get('id')} has no approval link")

        logger.info("paypal order created: id=%s status=%s user=%s", data.get("id"), data.get("status"), user.id)
        return IntentResult(provider_order_id=data["id"], redirect_url=approve_url)

    def fetch_intent_status(self, provider_id: str) -> Dict[str, Any]:
        """Current order state (CREATED / APPROVED / COMPLETED); no side effects."""
        return self._lookup(f"/v2/checkout/orders/{provider_id}", provider_id)

    def capture(self, provider_id: str, current: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Capture an approved order.

        Already-COMPLETED orders are returned as they are, and a provider
        "already captured" answer is treated as success, so repeating the
        call never fails a payment that went through.
        `current` is an order read the caller already holds.
        """
        order = current if current is not None else self.fetch_intent_status(provider_id)
        status = order.get("status")

        if status == "COMPLETED":
            logger.info("paypal order %s already captured", provider_id)
            return order
        if status != "APPROVED":
            logger.warning("paypal order %s not capturable (status=%s)", provider_id, status)
            raise CaptureConflict(self.name, provider_id, status)

        response = self._request(
            "POST",
            f"/v2/checkout/orders/{provider_id}/capture",
            json={},
            headers={"PayPal-Request-Id": f"capture-{provider_id}", "Prefer": "return=representation"},
            allow_status=(422,),
        )
        if response.status_code == 422:
            issues = [d.get("issue") for d in (response.json().get("details") or [])]
            if "ORDER_ALREADY_CAPTURED" in issues:
                logger.info("paypal order %s captured concurrently; re-reading", provider_id)
                return self.fetch_intent_status(provider_id)
            raise CaptureConflict(self.name, provider_id, issues[0] if issues else "UNPROCESSABLE_ENTITY")

        captured = response.json()
        logger.info("paypal order %s captured: status=%s", provider_id, captured.get("status"))
        return captured

    def fetch_event_state(self, event: WebhookEvent) -> Dict[str, Any]:
        if event.order_id:
            return self.fetch_intent_status(event.order_id)

        # Capture resources always reference their order
        capture = self._lookup(f"/v2/payments/captures/{event.resource_id}", event.resource_id)
        order_id = related_order_id(capture)
        if not order_id:
            logger.error("paypal capture %s does not reference an order", event.resource_id)
            raise PaymentNotFound(self.name, event.resource_id)
        logger.info("paypal capture %s belongs to order %s", event.resource_id, order_id)
        return self.fetch_intent_status(order_id)

    def is_final_success(self, raw: Dict[str, Any]) -> bool:
        capture = first_capture(raw)
        return raw.get("status") == "COMPLETED" and capture is not None and capture.get("status") == "COMPLETED"

    def owner_id(self, raw: Dict[str, Any]) -> Optional[str]:
        units = raw.get("purchase_units") or []
        if not units:
            return None
        ref = units[0].get("custom_id") or units[0].get("reference_id")
        return str(ref) if ref else None

    def normalize(self, raw: Dict[str, Any]) -> PaymentRecordData:
        capture = first_capture(raw) or {}
        units = raw.get("purchase_units") or [{}]
        amount = capture.get("amount") or units[0].get("amount") or {}
        payer = raw.get("payer") or {}
        date = (
            _parse_datetime(capture.get("create_time"))
            or _parse_datetime(raw.get("create_time"))
            or datetime.utcnow()
        )
        return PaymentRecordData(
            payment_id=str(capture.get("id") or raw["id"]),
            provider_order_id=str(raw["id"]),
            provider=self.provider,
            amount=Decimal(str(amount.get("value") or "0")),
            currency=amount.get("currency_code") or self.settings.PAYPAL_CURRENCY,
            status=(raw.get("status") or "unknown").lower(),
            status_detail=capture.get("status"),
            payment_method="paypal",
            payment_type="digital_goods",
            payer=PayerInfo(
                email=payer.get("email_address"),
                name=(payer.get("name") or {}).get("given_name"),
                payer_id=payer.get("payer_id"),
            ) if payer else None,
            date=date,
        )

    # ─── Webhooks ─────────────────────────────────────────────────────

    def verify_webhook(
        self, headers: Mapping[str, str], raw_body: bytes, body: Dict[str, Any], query: Mapping[str, str]
    ) -> None:
        """Server-to-server signature check; anything but SUCCESS is a hard reject."""
        webhook_id = self.settings.PAYPAL_WEBHOOK_ID
        if not webhook_id:
            logger.error("PAYPAL_WEBHOOK_ID is not configured; rejecting webhook")
            raise SignatureInvalid(self.name, "webhook id not configured")

        missing = [h for h in SIGNATURE_HEADERS if not headers.get(h)]
        if missing:
            raise SignatureInvalid(self.name, f"missing headers: {', '.join(missing)}")

        payload = {
            "auth_algo": headers["paypal-auth-algo"],
            "cert_url": headers["paypal-cert-url"],
            "transmission_id": headers["paypal-transmission-id"],
            "transmission_sig": headers["paypal-transmission-sig"],
            "transmission_time": headers["paypal-transmission-time"],
            "webhook_id": webhook_id,
            "webhook_event": body,
        }
        try:
            result = self._request("POST", "/v1/notifications/verify-webhook-signature", json=payload).json()
        except ProviderUnavailable as e:
            raise SignatureInvalid(self.name, f"verification call failed: {e.message}") from e

        status = result.get("verification_status")
        logger.info("paypal webhook verification: %s", status)
        if status != "SUCCESS":
            raise SignatureInvalid(self.name, f"verification_status={status}")

    def parse_webhook(self, body: Dict[str, Any], query: Mapping[str, str]) -> WebhookEvent:
        """
        Only PAYMENT.CAPTURE.COMPLETED is actionable. CHECKOUT.ORDER.APPROVED
        means approved but not captured; capturing stays with the client flow.
        """
        event_type = body.get("event_type")
        if event_type != CAPTURE_COMPLETED_EVENT:
            return self._ignore(event_type, f"event type not handled: {event_type}")

        resource = body.get("resource") or {}
        if resource.get("status") and resource["status"] != "COMPLETED":
            return self._ignore(event_type, f"capture status {resource['status']}")

        order_id = related_order_id(resource)
        if not order_id and not resource.get("id"):
            logger.error("paypal capture webhook without capture or order id")
            return self._ignore(event_type, "no capture or order id in webhook")
        if not order_id:
            logger.warning("paypal capture %s: no order id in webhook, resolving via capture", resource["id"])

        return WebhookEvent(
            provider=self.provider,
            kind=WebhookEventKind.PAYMENT_MAY_BE_FINAL,
            resource_id=resource.get("id"),
            order_id=order_id,
            raw_type=event_type,
        )

    def _ignore(self, raw_type: Optional[str], reason: str) -> WebhookEvent:
        return WebhookEvent(provider=self.provider, kind=WebhookEventKind.IGNORE, raw_type=raw_type, reason=reason)
