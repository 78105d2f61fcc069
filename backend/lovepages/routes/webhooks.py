"""
Webhook Routes — provider notifications.

Always answers 200 right away; the callback is processed afterwards by
WebhookService so slow provider lookups never trigger redelivery storms.
"""
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from lovepages.database import get_session_factory
from lovepages.schemas.schemas import PaymentProvider, WebhookAck
from lovepages.services.webhook_service import WebhookService, logger

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


async def _accept(provider: str, request: Request, background: BackgroundTasks, session_factory) -> WebhookAck:
    raw_body = await request.body()
    try:
        body = json.loads(raw_body) if raw_body else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    query = dict(request.query_params)
    headers = {k.lower(): v for k, v in request.headers.items()}
    logger.info("%s webhook received: type=%s query=%s", provider, body.get("type") or body.get("event_type"), query)

    background.add_task(WebhookService(session_factory).process, provider, body, raw_body, query, headers)
    return WebhookAck()


@router.post("/mercadopago", response_model=WebhookAck)
async def mercadopago_webhook(
    request: Request,
    background: BackgroundTasks,
    session_factory=Depends(get_session_factory),
):
    """MercadoPago v2 webhooks and legacy IPN (?topic=payment&id=...)."""
    return await _accept(PaymentProvider.MERCADOPAGO.value, request, background, session_factory)


@router.post("/paypal", response_model=WebhookAck)
async def paypal_webhook(
    request: Request,
    background: BackgroundTasks,
    session_factory=Depends(get_session_factory),
):
    """PayPal webhook events; authenticity checked against PayPal before use."""
    return await _accept(PaymentProvider.PAYPAL.value, request, background, session_factory)
