from lovepages.services.audit_service import AuditService
from lovepages.services.entitlement_store import EntitlementStore
from lovepages.services.providers import get_provider, register_provider, reset_providers
from lovepages.services.reconciliation_service import ReconcileOutcome, ReconciliationService
from lovepages.services.webhook_service import WebhookService

__all__ = [
    "AuditService", "EntitlementStore", "ReconcileOutcome", "ReconciliationService",
    "WebhookService", "get_provider", "register_provider", "reset_providers",
]
