"""
Gateway Adapter contract — normalized events and explicit results.

Every adapter turns a gateway-native webhook payload or polled status
response into a GatewayEvent. Adapters never raise for malformed input or
failed queries: they return Err so callers handle those paths on purpose.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Mapping, Optional, Union

from payrecon.exceptions import SignatureError
from payrecon.models.enums import Gateway, TransactionStatus


@dataclass(frozen=True)
class GatewayEvent:
    """Normalized webhook / poll result. Transaction-level facts only."""

    gateway: Gateway
    external_id: str                       # Link / merchant order id we issued
    status: TransactionStatus              # SUCCESS | FAILED | PENDING | CANCELLED
    amount_paid: Optional[int] = None      # Paise
    gateway_txn_id: Optional[str] = None
    bank_reference: Optional[str] = None
    error_code: Optional[str] = None
    reference_id: Optional[str] = None     # Obligation reference echoed by the gateway
    link_status: Optional[str] = None      # Raw link-level status, informational
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class Ok:
    event: GatewayEvent

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str
    ignorable: bool = False   # Well-formed but irrelevant (unsupported event type)
    query_failed: bool = False  # Network, timeout or HTTP failure while polling

    @property
    def ok(self) -> bool:
        return False


GatewayResult = Union[Ok, Err]


class GatewayAdapter(ABC):
    """One adapter per gateway: signature check, normalization, status polling."""

    gateway: Gateway
    client = None

    @abstractmethod
    def verify_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        ...

    def authenticate(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """Raise SignatureError unless the webhook is authentic."""
        if not self.verify_signature(raw_body, headers):
            raise SignatureError(self.gateway.value)

    @abstractmethod
    def normalize(self, payload: dict) -> GatewayResult:
        """Normalize a webhook payload."""

    @abstractmethod
    def normalize_status(self, response: dict, external_id: str) -> GatewayResult:
        """Normalize a polled link / order status response."""

    @abstractmethod
    def fetch_status(self, external_id: str) -> GatewayResult:
        """Query the gateway for the current status of an issued link."""

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts as well."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def rupees_to_paise(value) -> Optional[int]:
    """Convert a rupee amount (string or number) to integer paise."""
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def as_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def as_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
