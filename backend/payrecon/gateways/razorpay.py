"""
Razorpay Adapter — payment link webhooks and payment link status polling.

Correlation: the payment link id (`payload.payment_link.entity.id`) is the
id stored on the transaction; `reference_id` echoes the obligation
reference we sent when the link was created.

A `payment_link.partially_paid` event is reported as SUCCESS for that one
link: each installment has its own link, so a partial at the link level is
not a partial at the transaction level.
"""
import logging
from typing import Mapping, Optional

import httpx

from payrecon.exceptions import GatewayQueryError
from payrecon.gateways.base import (
    Err, GatewayAdapter, GatewayEvent, GatewayResult, Ok, as_int, as_str,
)
from payrecon.gateways.http import GatewayHttpClient
from payrecon.gateways.signatures import verify_razorpay
from payrecon.models.enums import Gateway, TransactionStatus
from payrecon.utils.dates import from_epoch_seconds

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = {
    "payment_link.paid": TransactionStatus.SUCCESS,
    "payment_link.partially_paid": TransactionStatus.SUCCESS,
    "payment_link.expired": TransactionStatus.CANCELLED,
    "payment_link.cancelled": TransactionStatus.CANCELLED,
}

LINK_STATUSES = {
    "paid": TransactionStatus.SUCCESS,
    "partially_paid": TransactionStatus.SUCCESS,
    "expired": TransactionStatus.CANCELLED,
    "cancelled": TransactionStatus.CANCELLED,
}


class RazorpayClient:
    """Payment Links REST API, HTTP basic auth with key id / secret."""

    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float,
                 transport: Optional[httpx.BaseTransport] = None):
        self._http = GatewayHttpClient(
            "RAZORPAY", base_url, timeout, auth=(key_id, key_secret), transport=transport,
        )

    def fetch_payment_link(self, link_id: str) -> dict:
        return self._http.get_json(f"/v1/payment_links/{link_id}")

    def close(self):
        self._http.close()


class RazorpayAdapter(GatewayAdapter):
    gateway = Gateway.RAZORPAY

    def __init__(self, webhook_secret: str, client: Optional[RazorpayClient] = None):
        self.webhook_secret = webhook_secret
        self.client = client

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        return verify_razorpay(raw_body, headers, self.webhook_secret)

    def normalize(self, payload: dict) -> GatewayResult:
        if not isinstance(payload, dict):
            return Err("payload is not an object")

        event = payload.get("event")
        link = ((payload.get("payload") or {}).get("payment_link") or {}).get("entity")
        if not isinstance(link, dict) or not link.get("id"):
            if event and event not in WEBHOOK_EVENTS:
                return Err(f"unsupported event {event}", ignorable=True)
            return Err("missing payment_link entity")

        status = WEBHOOK_EVENTS.get(event)
        if status is None:
            return Err(f"unsupported event {event}", ignorable=True)

        payment = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
        acquirer = payment.get("acquirer_data") or {}
        notes = link.get("notes") or {}

        return Ok(GatewayEvent(
            gateway=self.gateway,
            external_id=str(link["id"]),
            status=status,
            amount_paid=as_int(link.get("amount_paid")),
            gateway_txn_id=as_str(payment.get("id")),
            bank_reference=as_str(
                acquirer.get("rrn")
                or acquirer.get("bank_transaction_id")
                or acquirer.get("upi_transaction_id")
            ),
            error_code=as_str(payment.get("error_code")),
            reference_id=as_str(link.get("reference_id") or notes.get("reference_id")),
            link_status=as_str(link.get("status")),
            occurred_at=from_epoch_seconds(payment.get("created_at")),
        ))

    def normalize_status(self, response: dict, external_id: str) -> GatewayResult:
        if not isinstance(response, dict) or not response.get("status"):
            return Err("payment link response without status")

        link_status = str(response["status"])
        status = LINK_STATUSES.get(link_status, TransactionStatus.PENDING)
        payments = response.get("payments") or []
        first = payments[0] if payments and isinstance(payments[0], dict) else {}

        return Ok(GatewayEvent(
            gateway=self.gateway,
            external_id=str(response.get("id") or external_id),
            status=status,
            amount_paid=as_int(response.get("amount_paid")),
            gateway_txn_id=as_str(first.get("payment_id")),
            reference_id=as_str(response.get("reference_id")),
            link_status=link_status,
            occurred_at=from_epoch_seconds(first.get("created_at")),
        ))

    def fetch_status(self, external_id: str) -> GatewayResult:
        if self.client is None:
            return Err("Razorpay API credentials are not configured", query_failed=True)
        try:
            response = self.client.fetch_payment_link(external_id)
        except GatewayQueryError as exc:
            logger.warning("Razorpay status query failed for %s: %s", external_id, exc.reason)
            return Err(exc.reason, query_failed=True)
        return self.normalize_status(response, external_id)
