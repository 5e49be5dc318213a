"""
PhonePe Adapter — Standard Checkout callbacks and order status polling.

Correlation uses the merchant order id we issued (`merchantOrderId`, or
`orderId` on payloads that only carry that field).

State vocabulary: COMPLETED → SUCCESS, FAILED → FAILED, anything else →
PENDING (no state change).
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import httpx

from payrecon.exceptions import GatewayQueryError
from payrecon.gateways.base import (
    Err, GatewayAdapter, GatewayEvent, GatewayResult, Ok, as_int, as_str,
)
from payrecon.gateways.http import GatewayHttpClient
from payrecon.gateways.signatures import verify_phonepe
from payrecon.models.enums import Gateway, TransactionStatus

logger = logging.getLogger(__name__)

STATES = {
    "COMPLETED": TransactionStatus.SUCCESS,
    "FAILED": TransactionStatus.FAILED,
}

ENDPOINTS = {
    "PRODUCTION": (
        "https://api.phonepe.com/apis/pg",
        "https://api.phonepe.com/apis/identity-manager",
    ),
    "SANDBOX": (
        "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "https://api-preprod.phonepe.com/apis/pg-sandbox",
    ),
}

TOKEN_EXPIRY_MARGIN_SECONDS = 60


def map_phonepe_state(state) -> TransactionStatus:
    return STATES.get(str(state).upper() if state else "", TransactionStatus.PENDING)


@dataclass(frozen=True)
class TokenCache:
    """An OAuth access token and the epoch second it stops being usable."""

    token: str
    expires_at: float

    def is_valid(self, now: float, margin: float = TOKEN_EXPIRY_MARGIN_SECONDS) -> bool:
        return bool(self.token) and now < self.expires_at - margin


class PhonePeClient:
    """Order status API authenticated with a client-credentials O-Bearer token."""

    def __init__(self, client_id: str, client_secret: str, client_version: int, environment: str,
                 timeout: float, transport: Optional[httpx.BaseTransport] = None,
                 clock: Callable[[], float] = time.time):
        base_url, oauth_url = ENDPOINTS.get(environment.upper(), ENDPOINTS["SANDBOX"])
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version
        self._clock = clock
        self._token: Optional[TokenCache] = None
        self._api = GatewayHttpClient("PHONEPE", base_url, timeout, transport=transport)
        self._oauth = GatewayHttpClient("PHONEPE", oauth_url, timeout, transport=transport)

    @property
    def token_cache(self) -> Optional[TokenCache]:
        return self._token

    def access_token(self) -> str:
        now = self._clock()
        if self._token is not None and self._token.is_valid(now):
            return self._token.token

        data = self._oauth.request_json(
            "POST",
            "/v1/oauth/token",
            data={
                "client_id": self.client_id,
                "client_version": str(self.client_version),
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = data.get("access_token")
        if not token:
            raise GatewayQueryError("PHONEPE", "OAuth response without access_token")

        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = now + float(data.get("expires_in") or 0)
        self._token = TokenCache(token=token, expires_at=float(expires_at))
        logger.info("PhonePe access token refreshed (expires_at=%s)", self._token.expires_at)
        return token

    def get_order_status(self, merchant_order_id: str, details: bool = False) -> dict:
        token = self.access_token()
        params = {"details": "true"} if details else None
        return self._api.get_json(
            f"/checkout/v2/order/{merchant_order_id}/status",
            params=params,
            headers={"Authorization": f"O-Bearer {token}"},
        )

    def close(self):
        self._api.close()
        self._oauth.close()


class PhonePeAdapter(GatewayAdapter):
    gateway = Gateway.PHONEPE

    def __init__(self, callback_username: str, callback_password: str,
                 client: Optional[PhonePeClient] = None):
        self.callback_username = callback_username
        self.callback_password = callback_password
        self.client = client

    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        return verify_phonepe(raw_body, headers, self.callback_username, self.callback_password)

    def _event(self, body: dict, external_id: str) -> GatewayEvent:
        details = body.get("paymentDetails") or []
        first = details[0] if details and isinstance(details[0], dict) else {}
        rail = first.get("rail") or {}
        return GatewayEvent(
            gateway=self.gateway,
            external_id=external_id,
            status=map_phonepe_state(body.get("state")),
            amount_paid=as_int(body.get("amount")),
            gateway_txn_id=as_str(first.get("transactionId")),
            bank_reference=as_str(rail.get("utr")),
            error_code=as_str(body.get("errorCode") or first.get("errorCode")),
            link_status=as_str(body.get("state")),
        )

    def normalize(self, payload: dict) -> GatewayResult:
        if not isinstance(payload, dict):
            return Err("payload is not an object")
        body = payload.get("payload") if isinstance(payload.get("payload"), dict) else payload

        external_id = body.get("merchantOrderId") or body.get("orderId")
        if not external_id:
            return Err("missing merchantOrderId")
        if not body.get("state"):
            return Err("missing state")
        return Ok(self._event(body, str(external_id)))

    def normalize_status(self, response: dict, external_id: str) -> GatewayResult:
        if not isinstance(response, dict) or not response.get("state"):
            return Err("order status response without state")
        return Ok(self._event(response, external_id))

    def fetch_status(self, external_id: str) -> GatewayResult:
        if self.client is None:
            return Err("PhonePe API credentials are not configured", query_failed=True)
        try:
            response = self.client.get_order_status(external_id, details=True)
        except GatewayQueryError as exc:
            logger.warning("PhonePe status query failed for %s: %s", external_id, exc.reason)
            return Err(exc.reason, query_failed=True)
        return self.normalize_status(response, external_id)
