"""
Webhook Routes — Payment gateway callbacks.
Handles: Razorpay payment links, Cashfree payment links, PhonePe checkout.

The signature is checked against the raw body before anything is parsed.
Gateways retry on non-2xx, so idempotent no-ops and ignored event types
answer 200.
"""
import json
import logging
from typing import Dict, Mapping

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from payrecon.database import get_db
from payrecon.exceptions import PaymentNotFound, SignatureError, TransactionNotFound
from payrecon.gateways import get_adapters
from payrecon.gateways.base import Err, GatewayAdapter
from payrecon.models.enums import Gateway
from payrecon.schemas.schemas import WebhookAck
from payrecon.services.event_processor import PaymentEventProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


async def raw_body(request: Request) -> bytes:
    return await request.body()


def handle_webhook(
    gateway: Gateway,
    body: bytes,
    headers: Mapping[str, str],
    db: Session,
    adapters: Dict[Gateway, GatewayAdapter],
) -> WebhookAck:
    adapter = adapters[gateway]

    try:
        adapter.authenticate(body, headers)
    except SignatureError as exc:
        logger.warning("Rejected %s webhook: %s", gateway.value, exc.reason)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Rejected %s webhook: body is not JSON", gateway.value)
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    result = adapter.normalize(payload)
    if isinstance(result, Err):
        if result.ignorable:
            logger.info("Ignored %s webhook: %s", gateway.value, result.reason)
            return WebhookAck(outcome="IGNORED")
        logger.warning("Rejected %s webhook: %s", gateway.value, result.reason)
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    try:
        processed = PaymentEventProcessor(db).process(result.event, gateway.value)
    except (TransactionNotFound, PaymentNotFound) as exc:
        logger.error("%s webhook for %s not correlated: %s", gateway.value, result.event.external_id, exc)
        raise HTTPException(status_code=404, detail="Transaction not found")
    except Exception:
        db.rollback()
        logger.exception("%s webhook for %s failed", gateway.value, result.event.external_id)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return WebhookAck(outcome=processed.outcome.value, transaction_id=processed.transaction.id)


@router.post("/razorpay", response_model=WebhookAck)
def razorpay_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    adapters: Dict[Gateway, GatewayAdapter] = Depends(get_adapters),
):
    """Razorpay payment link events (x-razorpay-signature)."""
    return handle_webhook(Gateway.RAZORPAY, body, request.headers, db, adapters)


@router.post("/cashfree", response_model=WebhookAck)
def cashfree_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    adapters: Dict[Gateway, GatewayAdapter] = Depends(get_adapters),
):
    """Cashfree PAYMENT_LINK_EVENT (x-webhook-signature, x-webhook-timestamp)."""
    return handle_webhook(Gateway.CASHFREE, body, request.headers, db, adapters)


@router.post("/phonepe/payment", response_model=WebhookAck)
def phonepe_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    adapters: Dict[Gateway, GatewayAdapter] = Depends(get_adapters),
):
    """PhonePe checkout callbacks (Authorization)."""
    return handle_webhook(Gateway.PHONEPE, body, request.headers, db, adapters)
