"""
Payment Routes — PRO checkout through MercadoPago and PayPal.
Handles: intent creation, client-driven capture, status, history, simulation.
"""
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from lovepages.config import get_settings
from lovepages.database import get_db, get_session_factory
from lovepages.exceptions import CaptureConflict
from lovepages.models.user import User
from lovepages.schemas.schemas import (
    CaptureResponse, CreateIntentResponse, PaymentHistoryItem, PaymentHistoryResponse,
    PaymentProvider, PaymentRecordData, PaymentStatusResponse,
)
from lovepages.services.audit_service import AuditService
from lovepages.services.providers import UnknownProvider, get_provider
from lovepages.services.reconciliation_service import ReconciliationService
from lovepages.utils.auth import get_current_user
from lovepages.utils.logger import get_logger
from lovepages.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api/payments", tags=["Payments"])
logger = get_logger("lovepages.payments", "payments.log")

# Capture work that outlives a timed-out request keeps running here
_capture_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="capture")


def _adapter(provider: str):
    try:
        return get_provider(provider)
    except UnknownProvider:
        raise HTTPException(status_code=404, detail=f"Unknown payment provider: {provider}")


def _create_intent(provider: str, user: User, db: Session) -> CreateIntentResponse:
    if user.is_pro_active():
        raise HTTPException(
            status_code=409,
            detail={"code": "ALREADY_PRO", "message": "You already have the PRO plan."},
        )

    adapter = _adapter(provider)
    intent = adapter.create_intent(user)

    AuditService.log(
        db, user.id, "INTENT_CREATED",
        provider=adapter.name,
        payload=intent.model_dump(),
    )
    logger.info("intent created: provider=%s order=%s user=%s", adapter.name, intent.provider_order_id, user.id)

    return CreateIntentResponse(provider=adapter.provider, **intent.model_dump())


def _check_owner(adapter, raw, user_id: str, provider_id: str) -> None:
    owner = adapter.owner_id(raw)
    if owner != user_id:
        logger.warning(
            "%s %s requested by user %s refused: payment belongs to %r", adapter.name, provider_id, user_id, owner,
        )
        raise HTTPException(status_code=403, detail="This payment does not belong to the current user")


def _capture_and_reconcile(adapter, provider_order_id: str, user_id: str, session_factory):
    """Capture, check ownership and finality, then reconcile with a dedicated session."""
    logger.info("capture attempted: provider=%s order=%s user=%s", adapter.name, provider_order_id, user_id)
    db = session_factory()
    try:
        # Ownership is checked before anything is captured
        current = adapter.fetch_intent_status(provider_order_id)
        _check_owner(adapter, current, user_id, provider_order_id)
        try:
            raw = adapter.capture(provider_order_id, current=current)
        except CaptureConflict as e:
            AuditService.log(
                db, user_id, "CAPTURE_CONFLICT",
                provider=adapter.name,
                payload={"order_id": provider_order_id, "status": e.status},
            )
            raise

        _check_owner(adapter, raw, user_id, provider_order_id)

        if not adapter.is_final_success(raw):
            logger.info("capture of %s %s not completed (status=%s)", adapter.name, provider_order_id, raw.get("status"))
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "PAYMENT_NOT_COMPLETED",
                    "message": "The payment is not completed.",
                    "status": raw.get("status"),
                },
            )

        record = adapter.normalize(raw)
        result = ReconciliationService.reconcile(db, user_id, record, adapter.name, source="capture")
        logger.info("capture completed: provider=%s order=%s -> %s", adapter.name, provider_order_id, result.outcome.value)
        return result
    finally:
        db.close()


def _log_late_capture(future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("background capture failed: %s", error)
    else:
        logger.info("background capture finished: %r", future.result())


@router.post("/create-preference", response_model=CreateIntentResponse)
def create_preference(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(requests=5, window=60)),
):
    """Legacy alias: MercadoPago create-intent."""
    return _create_intent(PaymentProvider.MERCADOPAGO.value, user, db)


@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(user: User = Depends(get_current_user)):
    """The caller's confirmed payments, newest first."""
    items = [PaymentHistoryItem.model_validate(p) for p in reversed(user.payments)]
    return PaymentHistoryResponse(
        payments=items,
        is_pro=user.is_pro_active(),
        total_payments=len(items),
    )


@router.post("/simulate-success", response_model=CaptureResponse)
def simulate_success(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Development only: grant PRO through the same reconciliation path."""
    settings = get_settings()
    if not settings.simulation_enabled:
        raise HTTPException(status_code=403, detail="Payment simulation is disabled")

    record = PaymentRecordData(
        payment_id=f"SIM-{uuid.uuid4().hex[:12].upper()}",
        provider=PaymentProvider.SIMULATION,
        amount=Decimal(str(settings.MERCADOPAGO_PRO_PRICE)),
        currency=settings.MERCADOPAGO_CURRENCY,
        status="approved",
        status_detail="accredited",
        payment_method="simulation",
        payment_type="simulation",
        date=datetime.utcnow(),
    )
    result = ReconciliationService.reconcile(db, user.id, record, PaymentProvider.SIMULATION.value, source="simulation")
    AuditService.log(db, user.id, "PAYMENT_SIMULATED", provider="simulation", payload={"payment_id": record.payment_id})
    logger.warning("simulated payment %s for user %s", record.payment_id, user.id)

    return CaptureResponse(
        is_pro=True,
        already_processed=result.already_processed,
        payment=record,
        message="Payment simulated. PRO activated.",
    )


@router.post("/{provider}/create-intent", response_model=CreateIntentResponse)
def create_intent(
    provider: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(requests=5, window=60)),
):
    """Start checkout: returns the provider order id and the page to redirect to."""
    return _create_intent(provider, user, db)


@router.post("/{provider}/capture/{provider_order_id}", response_model=CaptureResponse)
def capture_payment(
    provider: str,
    provider_order_id: str,
    response: Response,
    user: User = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    """
    Confirm a payment after the payer returns from the provider.

    Waits up to CAPTURE_CONFIRM_TIMEOUT_SECONDS; past that it answers 202
    and the capture keeps going, so a webhook or a later call finishes it.
    """
    settings = get_settings()
    adapter = _adapter(provider)
    future = _capture_pool.submit(_capture_and_reconcile, adapter, provider_order_id, user.id, session_factory)
    try:
        result = future.result(timeout=settings.CAPTURE_CONFIRM_TIMEOUT_SECONDS)
    except FutureTimeout:
        logger.warning("capture of %s %s still running after %ss", provider, provider_order_id,
                       settings.CAPTURE_CONFIRM_TIMEOUT_SECONDS)
        future.add_done_callback(_log_late_capture)
        response.status_code = 202
        return CaptureResponse(
            status="processing",
            message="Payment is being confirmed. Check your account again shortly.",
        )

    return CaptureResponse(
        is_pro=True,
        already_processed=result.already_processed,
        payment=result.record,
        message="Payment already processed." if result.already_processed else "PRO activated.",
    )


@router.get("/{provider}/{payment_id}/status", response_model=PaymentStatusResponse)
def payment_status(
    provider: str,
    payment_id: str,
    user: User = Depends(get_current_user),
):
    """Read-only provider status of one of the caller's payments."""
    adapter = _adapter(provider)
    raw = adapter.fetch_intent_status(payment_id)
    _check_owner(adapter, raw, user.id, payment_id)

    record = adapter.normalize(raw)
    return PaymentStatusResponse(
        provider=record.provider,
        payment_id=record.payment_id,
        provider_order_id=record.provider_order_id,
        status=record.status,
        status_detail=record.status_detail,
        amount=record.amount,
        currency=record.currency,
        date=record.date,
        is_final_success=adapter.is_final_success(raw),
    )
