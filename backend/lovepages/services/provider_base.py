"""
Provider Adapter Base — shared HTTP plumbing for payment providers.

Adapters isolate every provider-specific protocol, auth and schema detail
behind the same operations (create_intent, fetch_intent_status, capture,
is_final_success, normalize) so the rest of the payment core only ever
sees PaymentRecordData.
"""
from typing import Any, Dict, Mapping, Optional

import httpx
from tenacity import Retrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_fixed

from lovepages.config import Settings, get_settings
from lovepages.exceptions import PaymentNotFound, ProviderUnavailable
from lovepages.schemas.schemas import IntentResult, PaymentProvider, PaymentRecordData, WebhookEvent
from lovepages.utils.logger import get_logger

logger = get_logger("lovepages.providers", "payments.log")


class _NotFoundYet(Exception):
    """Provider answered 404; the payment may become queryable shortly."""


class ProviderAdapter:
    """Base class for provider adapters. Subclasses set `provider` and `base_url`."""

    provider: PaymentProvider
    base_url: str = ""

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self._client = http_client or httpx.Client(timeout=self.settings.PROVIDER_TIMEOUT_SECONDS)
        self.lookup_attempts = max(1, self.settings.STATUS_LOOKUP_ATTEMPTS)
        self.lookup_delay = max(0.0, self.settings.STATUS_LOOKUP_DELAY_SECONDS)

    @property
    def name(self) -> str:
        return self.provider.value

    # ─── Operations (overridden per provider) ─────────────────────────

    def create_intent(self, user) -> IntentResult:
        raise NotImplementedError

    def fetch_intent_status(self, provider_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def capture(self, provider_id: str, current: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Confirm/capture; `current` is a status read the caller already made."""
        raise NotImplementedError

    def is_final_success(self, raw: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def normalize(self, raw: Dict[str, Any]) -> PaymentRecordData:
        raise NotImplementedError

    def owner_id(self, raw: Dict[str, Any]) -> Optional[str]:
        """The user id echoed back through the provider's custom reference field."""
        raise NotImplementedError

    def parse_webhook(self, body: Dict[str, Any], query: Mapping[str, str]) -> WebhookEvent:
        raise NotImplementedError

    def fetch_event_state(self, event: WebhookEvent) -> Dict[str, Any]:
        """Authoritative provider state for an actionable webhook event."""
        return self.fetch_intent_status(event.order_id or event.resource_id)

    def verify_webhook(
        self, headers: Mapping[str, str], raw_body: bytes, body: Dict[str, Any], query: Mapping[str, str]
    ) -> None:
        """Raise SignatureInvalid when the callback cannot be authenticated."""
        raise NotImplementedError

    # ─── HTTP helpers ─────────────────────────────────────────────────

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        not_found_retryable: bool = False,
        allow_status: tuple = (),
    ) -> httpx.Response:
        """Send a request; map transport/auth/5xx failures to ProviderUnavailable."""
        url = f"{self.base_url}{path}"
        merged = {"Content-Type": "application/json", **self._auth_headers(), **(headers or {})}
        try:
            response = self._client.request(method, url, json=json, headers=merged)
        except httpx.TimeoutException as e:
            logger.error("%s %s %s timed out: %s", self.name, method, path, e)
            raise ProviderUnavailable(self.name, f"timeout calling {path}") from e
        except httpx.HTTPError as e:
            logger.error("%s %s %s failed: %s", self.name, method, path, e)
            raise ProviderUnavailable(self.name, f"network error calling {path}") from e

        if response.status_code in allow_status:
            return response
        if response.status_code == 404 and not_found_retryable:
            raise _NotFoundYet(path)
        if response.status_code in (401, 403):
            logger.error("%s rejected credentials on %s (%s)", self.name, path, response.status_code)
            raise ProviderUnavailable(self.name, "authentication rejected", status_code=response.status_code)
        if response.status_code >= 400:
            logger.error("%s %s %s -> %s %s", self.name, method, path, response.status_code, response.text[:500])
            raise ProviderUnavailable(self.name, f"{path} returned {response.status_code}", status_code=response.status_code)
        return response

    def _lookup(self, path: str, provider_id: str) -> Dict[str, Any]:
        """
        GET a payment/order, retrying while the provider still answers 404.

        Webhooks can fire a second or two before the payment is queryable,
        so "not found" is retried; anything found is returned at once, even
        when it is not final.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(_NotFoundYet),
            stop=stop_after_attempt(self.lookup_attempts),
            wait=wait_fixed(self.lookup_delay),
            reraise=False,
        )
        try:
            for attempt in retrying:
                with attempt:
                    n = attempt.retry_state.attempt_number
                    if n > 1:
                        logger.info("%s lookup %s: attempt %d/%d", self.name, provider_id, n, self.lookup_attempts)
                    return self._request("GET", path, not_found_retryable=True).json()
        except RetryError as e:
            logger.error("%s: %s still not found after %d attempts", self.name, provider_id, self.lookup_attempts)
            raise PaymentNotFound(self.name, provider_id, self.lookup_attempts) from e
        raise PaymentNotFound(self.name, provider_id, self.lookup_attempts)

    def close(self) -> None:
        self._client.close()
