"""
Transaction Metadata — Structured value stored in transactions.metadata.

Validated on every read and write so gateway fields never travel as
untyped JSON. Serialized with camelCase keys:

    {paymentType, type, gateway: {linkId, linkUrl, linkStatus, linkExpiresAt,
     linkCreatedAt, referenceId}, response: {txnId, bankTxnId, responseCode,
     responseMessage}, recordedAt}
"""
import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GatewayLinkData(_CamelModel):
    link_id: str
    link_url: Optional[str] = None
    link_status: Optional[str] = None
    link_expires_at: Optional[str] = None
    link_created_at: Optional[str] = None
    reference_id: Optional[str] = None


class GatewayResponseData(_CamelModel):
    txn_id: Optional[str] = None
    bank_txn_id: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None


class TransactionMetadata(_CamelModel):
    payment_type: Optional[Literal["FULL_PAYMENT", "INSTALLMENTS"]] = None
    type: Optional[Literal["enrollment", "rto-service"]] = None
    gateway: Optional[GatewayLinkData] = None
    response: Optional[GatewayResponseData] = None
    recorded_at: Optional[str] = None  # Manual payments

    @classmethod
    def load(cls, raw: Any) -> "TransactionMetadata":
        """Parse stored metadata; malformed blobs are logged and replaced by an empty value."""
        try:
            return cls.model_validate(raw or {})
        except ValidationError as exc:
            logger.warning("Discarding malformed transaction metadata: %s", exc.errors()[:3])
            return cls()

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def with_response(self, **fields) -> "TransactionMetadata":
        """Merge gateway response fields, keeping values already recorded."""
        current = self.response.model_dump() if self.response else {}
        current.update({k: v for k, v in fields.items() if v is not None})
        return self.model_copy(update={"response": GatewayResponseData(**current)})

    def with_link_status(self, status: Optional[str]) -> "TransactionMetadata":
        if not status or not self.gateway:
            return self
        return self.model_copy(update={"gateway": self.gateway.model_copy(update={"link_status": status})})

    @property
    def reference_id(self) -> Optional[str]:
        return self.gateway.reference_id if self.gateway else None


def build_payment_link_metadata(
    payment_type: str,
    type: str,
    link_id: str,
    link_url: Optional[str] = None,
    link_status: Optional[str] = None,
    link_expires_at=None,
    link_created_at=None,
    reference_id: Optional[str] = None,
) -> TransactionMetadata:
    return TransactionMetadata(
        payment_type=payment_type,
        type=type,
        gateway=GatewayLinkData(
            link_id=link_id,
            link_url=link_url,
            link_status=link_status,
            link_expires_at=link_expires_at.isoformat() if link_expires_at else None,
            link_created_at=link_created_at.isoformat() if link_created_at else None,
            reference_id=reference_id,
        ),
    )


def build_manual_payment_metadata(payment_type: Optional[str], type: Optional[str], recorded_at) -> TransactionMetadata:
    return TransactionMetadata(payment_type=payment_type, type=type, recorded_at=recorded_at.isoformat())
