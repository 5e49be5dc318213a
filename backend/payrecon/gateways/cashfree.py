"""
Cashfree Adapter — PAYMENT_LINK_EVENT webhooks and link status polling.

`data.order.transaction_status` maps 1:1 onto the transaction status.
The link-level PAID / PARTIALLY_PAID value is carried as `link_status`; a
SUCCESS on a PARTIALLY_PAID link only settles its obligation once the
collected amount reaches it (see `link_settles`).

Correlation uses `data.link_id` (the id we issued); `link_notes.referenceId`
echoes the obligation reference set at link creation.
"""
import logging
from typing import Mapping, Optional

import httpx

from payrecon.exceptions import GatewayQueryError
from payrecon.gateways.base import (
    Err, GatewayAdapter, GatewayEvent, GatewayResult, Ok, as_str, rupees_to_paise,
)
from payrecon.gateways.http import GatewayHttpClient
from payrecon.gateways.signatures import verify_cashfree
from payrecon.models.enums import Gateway, TransactionStatus
from payrecon.utils.dates import parse_iso_datetime

logger = logging.getLogger(__name__)

PAYMENT_LINK_EVENT = "PAYMENT_LINK_EVENT"

ORDER_STATUSES = {
    "SUCCESS": TransactionStatus.SUCCESS,
    "FAILED": TransactionStatus.FAILED,
    "PENDING": TransactionStatus.PENDING,
}

PAID = "PAID"
PARTIALLY_PAID = "PARTIALLY_PAID"

LINK_STATUSES = {
    PAID: TransactionStatus.SUCCESS,
    PARTIALLY_PAID: TransactionStatus.SUCCESS,
    "EXPIRED": TransactionStatus.CANCELLED,
    "INACTIVE": TransactionStatus.CANCELLED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "ACTIVE": TransactionStatus.PENDING,
}

BASE_URLS = {
    "production": "https://api.cashfree.com/pg",
    "sandbox": "https://sandbox.cashfree.com/pg",
}


def link_settles(link_status: Optional[str], amount_paid: Optional[int], expected_amount: int) -> bool:
    """Whether a successful payment on a link covers the obligation it was issued for."""
    if link_status != PARTIALLY_PAID:
        return True
    return amount_paid is not None and amount_paid >= expected_amount


class CashfreeClient:
    def __init__(self, client_id: str, client_secret: str, environment: str, api_version: str,
                 timeout: float, transport: Optional[httpx.BaseTransport] = None):
        base_url = BASE_URLS.get(environment, BASE_URLS["sandbox"])
        self._http = GatewayHttpClient(
            "CASHFREE",
            base_url,
            timeout,
            headers={
                "Accept": "application/json",
                "x-api-version": api_version,
                "x-client-id": client_id,
                "x-client-secret": client_secret,
            },
            transport=transport,
        )

    def get_payment_link(self, link_id: str) -> dict:
        if not link_id:
            raise GatewayQueryError("CASHFREE", "link id is required")
        return self._http.get_json(f"/links/{link_id}")

    def close(self):
        self._http.close()


class CashfreeAdapter(GatewayAdapter):
    gateway = Gateway.CASHFREE

    def __init__(self, client_secret: str, client: Optional[CashfreeClient] = None):
        self.client_secret = client_secret
        self.client = client

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        return verify_cashfree(raw_body, headers, self.client_secret)

    def normalize(self, payload: dict) -> GatewayResult:
        if not isinstance(payload, dict):
            return Err("payload is not an object")
        data = payload.get("data")
        if not isinstance(data, dict):
            return Err("missing data field")
        if payload.get("type") != PAYMENT_LINK_EVENT:
            return Err(f"unsupported event type {payload.get('type')}", ignorable=True)

        link_id = data.get("link_id")
        order = data.get("order")
        if not link_id or not isinstance(order, dict):
            return Err("missing link_id or order")

        order_status = order.get("transaction_status")
        status = ORDER_STATUSES.get(order_status)
        if status is None:
            return Err(f"unknown transaction_status {order_status}")

        notes = data.get("link_notes") or {}
        return Ok(GatewayEvent(
            gateway=self.gateway,
            external_id=str(link_id),
            status=status,
            amount_paid=rupees_to_paise(data.get("link_amount_paid")),
            gateway_txn_id=as_str(order.get("transaction_id")),
            bank_reference=as_str(order.get("bank_reference")),
            error_code=as_str(order.get("error_code")),
            reference_id=as_str(notes.get("referenceId")),
            link_status=as_str(data.get("link_status")),
            occurred_at=parse_iso_datetime(payload.get("event_time")),
        ))

    def normalize_status(self, response: dict, external_id: str) -> GatewayResult:
        if not isinstance(response, dict) or not response.get("link_status"):
            return Err("payment link response without link_status")

        link_status = str(response["link_status"])
        notes = response.get("link_notes") or {}
        return Ok(GatewayEvent(
            gateway=self.gateway,
            external_id=str(response.get("link_id") or external_id),
            status=LINK_STATUSES.get(link_status, TransactionStatus.PENDING),
            amount_paid=rupees_to_paise(response.get("link_amount_paid")),
            reference_id=as_str(notes.get("referenceId")),
            link_status=link_status,
        ))

    def fetch_status(self, external_id: str) -> GatewayResult:
        if self.client is None:
            return Err("Cashfree API credentials are not configured", query_failed=True)
        try:
            response = self.client.get_payment_link(external_id)
        except GatewayQueryError as exc:
            logger.warning("Cashfree status query failed for %s: %s", external_id, exc.reason)
            return Err(exc.reason, query_failed=True)
        return self.normalize_status(response, external_id)
