"""
Signature Verifier — Per-gateway authenticity checks for inbound webhooks.

Each check runs on the raw request body before any parsing. A missing
secret, header or any failure during validation counts as invalid.
"""
import logging
from typing import Mapping, Optional

from payrecon.gateways.base import get_header
from payrecon.utils.hashing import (
    constant_time_equals, hmac_sha256_base64, hmac_sha256_hex, sha256_hex,
)

logger = logging.getLogger(__name__)

RAZORPAY_SIGNATURE_HEADER = "x-razorpay-signature"
CASHFREE_SIGNATURE_HEADER = "x-webhook-signature"
CASHFREE_TIMESTAMP_HEADER = "x-webhook-timestamp"
PHONEPE_AUTH_HEADER = "Authorization"


def verify_razorpay(raw_body: bytes, headers: Mapping[str, str], secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded."""
    signature = get_header(headers, RAZORPAY_SIGNATURE_HEADER)
    if not signature or not secret:
        return False
    expected = hmac_sha256_hex(secret, raw_body)
    return constant_time_equals(expected, signature.strip())


def verify_cashfree(raw_body: bytes, headers: Mapping[str, str], secret: str) -> bool:
    """HMAC-SHA256 of timestamp + raw body, base64 encoded."""
    signature = get_header(headers, CASHFREE_SIGNATURE_HEADER)
    timestamp = get_header(headers, CASHFREE_TIMESTAMP_HEADER)
    if not signature or not timestamp or not secret:
        return False
    expected = hmac_sha256_base64(secret, timestamp.encode("utf-8") + raw_body)
    return constant_time_equals(expected, signature.strip())


def verify_phonepe(
    raw_body: bytes,
    headers: Mapping[str, str],
    username: str,
    password: Optional[str] = None,
) -> bool:
    """Callback authorization: SHA256(username:password), optionally prefixed "SHA256 "."""
    try:
        authorization = get_header(headers, PHONEPE_AUTH_HEADER)
        if not authorization or not username or not password:
            return False
        received = authorization.strip()
        if received.upper().startswith("SHA256 "):
            received = received[len("SHA256 "):].strip()
        expected = sha256_hex(f"{username}:{password}")
        return constant_time_equals(expected, received.lower())
    except Exception:
        logger.exception("PhonePe callback validation raised; treating as invalid")
        return False
