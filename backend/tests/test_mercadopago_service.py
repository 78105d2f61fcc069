from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from lovepages.config import Settings
from lovepages.exceptions import PaymentNotFound, ProviderUnavailable, SignatureInvalid
from lovepages.schemas.schemas import PaymentProvider, WebhookEventKind
from lovepages.services.mercadopago_service import MercadoPagoService
from lovepages.utils.hashing import hmac_sha256_hex


class TestFinalSuccess:
    @pytest.mark.parametrize("status,detail,expected", [
        ("approved", "accredited", True),
        ("approved", "partially_refunded", False),
        ("approved", None, False),
        ("pending", "pending_waiting_payment", False),
        ("in_process", "pending_review_manual", False),
        ("rejected", "cc_rejected_other_reason", False),
    ])
    def test_requires_approved_and_accredited(self, mp_adapter, status, detail, expected):
        assert mp_adapter.is_final_success({"status": status, "status_detail": detail}) is expected


class TestLookup:
    def test_returns_found_payment(self, mp_adapter, mp_api):
        mp_api.add_payment("1001", "user-1")
        raw = mp_adapter.fetch_intent_status("1001")
        assert raw["id"] == 1001
        assert len(mp_api.lookups("1001")) == 1

    def test_retries_while_not_found(self, mp_adapter, mp_api):
        mp_api.add_payment("1002", "user-1")
        mp_api.not_found_remaining["1002"] = 2
        raw = mp_adapter.fetch_intent_status("1002")
        assert raw["status"] == "approved"
        assert len(mp_api.lookups("1002")) == 3

    def test_gives_up_after_configured_attempts(self, mp_adapter, mp_api):
        with pytest.raises(PaymentNotFound) as exc:
            mp_adapter.fetch_intent_status("404404")
        assert exc.value.attempts == 3
        assert len(mp_api.lookups("404404")) == 3

    def test_non_final_payment_is_not_retried(self, mp_adapter, mp_api):
        mp_api.add_payment("1003", "user-1", status="pending", status_detail="pending_waiting_payment")
        raw = mp_adapter.fetch_intent_status("1003")
        assert raw["status"] == "pending"
        assert len(mp_api.lookups("1003")) == 1

    def test_capture_is_a_confirming_read(self, mp_adapter, mp_api):
        mp_api.add_payment("1004", "user-1")
        assert mp_adapter.capture("1004")["status_detail"] == "accredited"
        assert all(method == "GET" for method, _ in mp_api.requests)

    def test_capture_reuses_payment_read_by_caller(self, mp_adapter, mp_api):
        mp_api.add_payment("1007", "user-1")
        current = mp_adapter.fetch_intent_status("1007")

        assert mp_adapter.capture("1007", current=current) is current
        assert len(mp_api.lookups("1007")) == 1

    def test_rejected_credentials(self, mp_adapter, mp_api):
        mp_api.auth_status = 401
        with pytest.raises(ProviderUnavailable) as exc:
            mp_adapter.fetch_intent_status("1005")
        assert exc.value.http_status == 502

    def test_network_failure(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = MercadoPagoService(settings, httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(ProviderUnavailable):
            adapter.fetch_intent_status("1006")

    def test_missing_access_token(self):
        with pytest.raises(ProviderUnavailable):
            MercadoPagoService(Settings(MERCADOPAGO_ACCESS_TOKEN=""))


class TestCreateIntent:
    def test_preference_is_attributed_to_user(self, mp_adapter, mp_api, make_user):
        user = make_user(display_name="Ana Maria Souza")
        intent = mp_adapter.create_intent(user)

        assert intent.provider_order_id == "PREF-1"
        assert intent.redirect_url.startswith("https://www.mercadopago.test/")
        assert intent.sandbox_url.startswith("https://sandbox.mercadopago.test/")

        sent = mp_api.preferences[0]
        assert sent["external_reference"] == user.id
        assert sent["metadata"]["user_id"] == user.id
        assert sent["items"][0]["unit_price"] == 3.0
        assert sent["payer"]["name"] == "Ana"
        assert sent["payer"]["surname"] == "Maria Souza"
        assert sent["notification_url"].endswith("/api/webhooks/mercadopago")


class TestNormalize:
    def test_full_payment(self, mp_adapter, mp_api):
        raw = mp_api.add_payment("2001", "user-9", order_id="7007")
        record = mp_adapter.normalize(raw)

        assert record.payment_id == "2001"
        assert record.provider_order_id == "7007"
        assert record.provider == PaymentProvider.MERCADOPAGO
        assert record.amount == Decimal("3.0")
        assert record.payer.email == "payer@example.com"
        assert record.payer.payer_id == "555"
        # -04:00 offset stored as naive UTC
        assert record.date == datetime(2026, 2, 14, 14, 0, 0)

    def test_missing_payer_and_order(self, mp_adapter):
        record = mp_adapter.normalize({
            "id": 2002, "status": "approved", "status_detail": "accredited", "transaction_amount": 3,
        })
        assert record.payer is None
        assert record.provider_order_id is None
        assert record.currency == "USD"
        assert record.identifiers() == ["2002"]

    def test_owner_from_external_reference_or_metadata(self, mp_adapter):
        assert mp_adapter.owner_id({"external_reference": "u-1"}) == "u-1"
        assert mp_adapter.owner_id({"metadata": {"user_id": "u-2"}}) == "u-2"
        assert mp_adapter.owner_id({}) is None


class TestParseWebhook:
    def test_payment_updated_is_actionable(self, mp_adapter):
        event = mp_adapter.parse_webhook(
            {"action": "payment.updated", "type": "payment", "data": {"id": "3001"}}, {}
        )
        assert event.kind == WebhookEventKind.PAYMENT_MAY_BE_FINAL
        assert event.resource_id == "3001"

    def test_payment_created_is_ignored(self, mp_adapter):
        event = mp_adapter.parse_webhook(
            {"action": "payment.created", "type": "payment", "data": {"id": "3002"}}, {}
        )
        assert not event.actionable

    def test_type_payment_without_action(self, mp_adapter):
        event = mp_adapter.parse_webhook({"type": "payment", "data": {"id": 3003}}, {})
        assert event.actionable
        assert event.resource_id == "3003"

    def test_legacy_ipn_query(self, mp_adapter):
        event = mp_adapter.parse_webhook({}, {"topic": "payment", "id": "3004"})
        assert event.actionable
        assert event.resource_id == "3004"

    def test_other_topics_are_ignored(self, mp_adapter):
        assert not mp_adapter.parse_webhook({}, {"topic": "merchant_order", "id": "1"}).actionable
        assert not mp_adapter.parse_webhook({"type": "plan", "data": {"id": "1"}}, {}).actionable
        assert not mp_adapter.parse_webhook({}, {}).actionable

    def test_payment_without_id_is_ignored(self, mp_adapter):
        assert not mp_adapter.parse_webhook({"action": "payment.updated", "type": "payment"}, {}).actionable


class TestVerifyWebhook:
    def _adapter(self, secret):
        return MercadoPagoService(Settings(MERCADOPAGO_ACCESS_TOKEN="TEST", MERCADOPAGO_WEBHOOK_SECRET=secret))

    def test_skipped_without_secret(self, mp_adapter):
        mp_adapter.verify_webhook({}, b"{}", {}, {})

    def test_valid_signature(self):
        adapter = self._adapter("whsec")
        sig = hmac_sha256_hex("whsec", "id:3005;request-id:req-1;ts:1700000000;")
        headers = {"x-signature": f"ts=1700000000,v1={sig}", "x-request-id": "req-1"}
        adapter.verify_webhook(headers, b"", {"data": {"id": "3005"}}, {"data.id": "3005"})

    def test_mismatched_signature(self):
        adapter = self._adapter("whsec")
        headers = {"x-signature": "ts=1700000000,v1=deadbeef", "x-request-id": "req-1"}
        with pytest.raises(SignatureInvalid):
            adapter.verify_webhook(headers, b"", {"data": {"id": "3005"}}, {"data.id": "3005"})

    def test_missing_headers(self):
        with pytest.raises(SignatureInvalid):
            self._adapter("whsec").verify_webhook({}, b"", {}, {})
