"""
Webhook Service — processes provider callbacks after they were acknowledged.

Runs outside the request cycle with its own database session. Nothing a
callback carries is trusted: the payment state is always re-fetched from
the provider, and errors are logged rather than raised, since the
provider already received its 200.
"""
from typing import Any, Callable, Dict, Mapping, Optional

from lovepages.exceptions import PaymentError, SignatureInvalid, UserNotFound
from lovepages.services.audit_service import AuditService
from lovepages.services.providers import UnknownProvider, get_provider
from lovepages.services.reconciliation_service import ReconcileResult, ReconciliationService
from lovepages.utils.logger import get_logger

logger = get_logger("lovepages.webhooks", "webhooks.log")


class WebhookService:
    def __init__(self, session_factory: Callable, provider_lookup: Callable = get_provider):
        self.session_factory = session_factory
        self.provider_lookup = provider_lookup

    def process(
        self,
        provider: str,
        body: Dict[str, Any],
        raw_body: bytes,
        query: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> Optional[ReconcileResult]:
        """Verify, parse, re-fetch and reconcile one callback. Never raises."""
        db = self.session_factory()
        try:
            return self._process(db, provider, body, raw_body, query, headers)
        except UserNotFound as e:
            logger.error("ORPHANED PAYMENT via %s webhook: %s", provider, e.message)
        except PaymentError as e:
            logger.error("%s webhook processing failed: %s", provider, e.message)
        except Exception:
            logger.exception("unexpected error processing %s webhook", provider)
        finally:
            db.close()
        return None

    def _process(self, db, provider, body, raw_body, query, headers) -> Optional[ReconcileResult]:
        try:
            adapter = self.provider_lookup(provider)
        except UnknownProvider:
            logger.warning("webhook for unknown provider %r dropped", provider)
            return None

        try:
            adapter.verify_webhook(headers, raw_body, body, query)
        except SignatureInvalid as e:
            logger.warning("%s webhook rejected: %s", provider, e.reason)
            AuditService.log(
                db, None, "WEBHOOK_REJECTED",
                provider=provider,
                payload=body,
                metadata={"reason": e.reason},
            )
            return None

        event = adapter.parse_webhook(body, query)
        if not event.actionable:
            logger.info("%s webhook ignored (%s): %s", provider, event.raw_type, event.reason)
            return None

        lookup_id = event.order_id or event.resource_id
        logger.info("%s webhook %s: fetching %s", provider, event.raw_type, lookup_id)
        raw = adapter.fetch_event_state(event)

        if not adapter.is_final_success(raw):
            logger.info("%s payment %s not final yet (status=%s)", provider, lookup_id, raw.get("status"))
            return None

        record = adapter.normalize(raw)
        result = ReconciliationService.reconcile(db, adapter.owner_id(raw), record, provider, source="webhook")
        logger.info("%s webhook for %s -> %s", provider, record.payment_id, result.outcome.value)
        return result
