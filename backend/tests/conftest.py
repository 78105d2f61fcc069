"""
Shared fixtures: a throwaway SQLite database per test, in-memory fakes of the
MercadoPago and PayPal REST APIs served through httpx.MockTransport, and a
TestClient wired to both.
"""
import json
import os
import tempfile
import threading

_TMP = tempfile.mkdtemp(prefix="lovepages-tests-")
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'app.db')}")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("STATUS_LOOKUP_DELAY_SECONDS", "0")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from lovepages.config import Settings  # noqa: E402
from lovepages.database import build_engine, get_db, get_session_factory, init_db  # noqa: E402
from lovepages.main import app  # noqa: E402
from lovepages.services.entitlement_store import EntitlementStore  # noqa: E402
from lovepages.services.mercadopago_service import MercadoPagoService  # noqa: E402
from lovepages.services.paypal_service import PayPalService  # noqa: E402
from lovepages.services.providers import register_provider, reset_providers  # noqa: E402
from lovepages.utils.auth import issue_token  # noqa: E402
from lovepages.utils.rate_limiter import reset_rate_limits  # noqa: E402


# ─── Fake provider APIs ─────────────────────────────────────────────

class FakeMercadoPago:
    """Just enough of api.mercadopago.com: preferences and payment lookups."""

    def __init__(self):
        self.payments = {}
        self.preferences = []
        self.not_found_remaining = {}
        self.requests = []
        self.auth_status = None
        self.gate = None

    def add_payment(self, payment_id, user_id, status="approved", status_detail="accredited", order_id="9001"):
        self.payments[str(payment_id)] = {
            "id": int(payment_id),
            "status": status,
            "status_detail": status_detail,
            "external_reference": user_id,
            "transaction_amount": 3.0,
            "currency_id": "USD",
            "payment_method_id": "visa",
            "payment_type_id": "credit_card",
            "date_created": "2026-02-14T09:59:00.000-04:00",
            "date_approved": "2026-02-14T10:00:00.000-04:00",
            "payer": {"id": 555, "email": "payer@example.com", "first_name": "Ana"},
            "order": {"id": order_id},
        }
        return self.payments[str(payment_id)]

    def lookups(self, payment_id):
        return [r for r in self.requests if r == ("GET", f"/v1/payments/{payment_id}")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if self.gate is not None:
            self.gate.wait(5)
        if self.auth_status:
            return httpx.Response(self.auth_status, json={"message": "invalid access token"})

        if request.method == "POST" and path == "/checkout/preferences":
            body = json.loads(request.content)
            self.preferences.append(body)
            pref_id = f"PREF-{len(self.preferences)}"
            return httpx.Response(201, json={
                "id": pref_id,
                "init_point": f"https://www.mercadopago.test/checkout?pref_id={pref_id}",
                "sandbox_init_point": f"https://sandbox.mercadopago.test/checkout?pref_id={pref_id}",
            })

        if request.method == "GET" and path.startswith("/v1/payments/"):
            payment_id = path.rsplit("/", 1)[1]
            if self.not_found_remaining.get(payment_id, 0) > 0:
                self.not_found_remaining[payment_id] -= 1
                return httpx.Response(404, json={"message": "Payment not found"})
            if payment_id not in self.payments:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=self.payments[payment_id])

        return httpx.Response(500, json={"message": f"unexpected {request.method} {path}"})


class FakePayPal:
    """Just enough of the PayPal REST API: OAuth, orders v2 and webhook verification."""

    def __init__(self):
        self.orders = {}
        self.requests = []
        self.token_requests = 0
        self.verification_status = "SUCCESS"
        self.capture_status = "COMPLETED"
        self.captured_elsewhere = False

    def add_order(self, order_id, user_id, status="APPROVED"):
        self.orders[order_id] = {
            "id": order_id,
            "status": status,
            "create_time": "2026-02-14T14:00:00Z",
            "purchase_units": [{
                "reference_id": user_id,
                "custom_id": user_id,
                "amount": {"currency_code": "USD", "value": "1.75"},
            }],
            "payer": {"email_address": "buyer@example.com", "name": {"given_name": "Bruno"}, "payer_id": "PAYER42"},
            "links": [{"rel": "approve", "href": f"https://www.sandbox.paypal.test/checkoutnow?token={order_id}"}],
        }
        if status == "COMPLETED":
            self._complete(order_id)
        return self.orders[order_id]

    def _complete(self, order_id):
        order = self.orders[order_id]
        order["status"] = "COMPLETED"
        order["purchase_units"][0]["payments"] = {"captures": [{
            "id": f"CAP-{order_id}",
            "status": self.capture_status,
            "amount": {"currency_code": "USD", "value": "1.75"},
            "create_time": "2026-02-14T14:01:00Z",
        }]}

    def count(self, method, path):
        return sum(1 for r in self.requests if r == (method, path))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if path == "/v1/oauth2/token":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "A21-test-token", "expires_in": 32400})

        if request.method == "POST" and path == "/v2/checkout/orders":
            body = json.loads(request.content)
            order_id = f"ORDER-{len(self.orders) + 1}"
            self.add_order(order_id, body["purchase_units"][0]["custom_id"], status="CREATED")
            return httpx.Response(201, json=self.orders[order_id])

        if path.startswith("/v2/checkout/orders/"):
            parts = path.split("/")
            order_id = parts[4]
            if order_id not in self.orders:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
            order = self.orders[order_id]
            if request.method == "GET":
                return httpx.Response(200, json=order)
            if request.method == "POST" and parts[-1] == "capture":
                if self.captured_elsewhere:
                    self._complete(order_id)
                    return self._unprocessable("ORDER_ALREADY_CAPTURED")
                if order["status"] == "COMPLETED":
                    return self._unprocessable("ORDER_ALREADY_CAPTURED")
                if order["status"] != "APPROVED":
                    return self._unprocessable("ORDER_NOT_APPROVED")
                self._complete(order_id)
                return httpx.Response(201, json=order)

        if request.method == "GET" and path.startswith("/v2/payments/captures/"):
            capture_id = path.split("/")[-1]
            for order_id, order in self.orders.items():
                for capture in (order["purchase_units"][0].get("payments") or {}).get("captures", []):
                    if capture["id"] == capture_id:
                        return httpx.Response(200, json={
                            **capture,
                            "supplementary_data": {"related_ids": {"order_id": order_id}},
                        })
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})

        if request.method == "POST" and path == "/v1/notifications/verify-webhook-signature":
            return httpx.Response(200, json={"verification_status": self.verification_status})

        return httpx.Response(500, json={"name": "INTERNAL_SERVER_ERROR"})

    @staticmethod
    def _unprocessable(issue):
        return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": issue}]})


PAYPAL_SIGNATURE_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-transmission-id": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
    "paypal-transmission-sig": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s3boXB07VXCXUZy/UFzUlnGJn0wDugt7FlSvdKeIJenLRemUxYCPVoEZzg9VFNqOa48gMkvF+XTpxBeUx/kWy6B5cp7GkT2+pOowfRK7OaynuxUoKW3JcMWw272VKjLTtTAShncla7tGF+55rxyt2KNZIIqxNMJ48RDZheGU5w1npu9dZHnPgTXB9iomeVRoD8O/jhRpnKsGrDschyNdkeh81BJJMH4Ctc6lnCCquoP/GzCzz33MMsNdid7vL/NIWaCsekQpW26FpWPi/tfj8nLA==",
    "paypal-transmission-time": "2026-02-14T14:01:05Z",
}


# ─── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _isolate_process_state():
    reset_rate_limits()
    reset_providers()
    yield
    reset_providers()


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="test",
        MERCADOPAGO_ACCESS_TOKEN="TEST-mp-access-token",
        PAYPAL_CLIENT_ID="paypal-client",
        PAYPAL_CLIENT_SECRET="paypal-secret",
        PAYPAL_WEBHOOK_ID="WH-TEST-1",
        STATUS_LOOKUP_ATTEMPTS=3,
        STATUS_LOOKUP_DELAY_SECONDS=0,
        CAPTURE_CONFIRM_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mp_api():
    return FakeMercadoPago()


@pytest.fixture
def paypal_api():
    return FakePayPal()


@pytest.fixture
def mp_adapter(mp_api, settings):
    adapter = MercadoPagoService(settings, httpx.Client(transport=httpx.MockTransport(mp_api.handler)))
    register_provider("mercadopago", adapter)
    return adapter


@pytest.fixture
def paypal_adapter(paypal_api, settings):
    adapter = PayPalService(settings, httpx.Client(transport=httpx.MockTransport(paypal_api.handler)))
    register_provider("paypal", adapter)
    return adapter


@pytest.fixture
def client(session_factory, mp_adapter, paypal_adapter):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(email=None, display_name="Ana Souza"):
        counter["n"] += 1
        return EntitlementStore(db).create_user(email or f"user{counter['n']}@example.com", display_name)

    return _make


def auth_headers(user_or_id):
    user_id = getattr(user_or_id, "id", user_or_id)
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


def reload_user(session_factory, user_id):
    from lovepages.models.user import User

    session = session_factory()
    try:
        return session.query(User).filter(User.id == user_id).first()
    finally:
        session.close()


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()
