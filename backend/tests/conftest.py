"""Shared fixtures: in-memory database, payments, signed webhook helpers."""

import json
import os
import tempfile
from datetime import datetime, timedelta
from unittest.mock import MagicMock

# Settings are read at import time, so the environment must be set first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="payrecon-logs-")
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp_test_webhook_secret"
os.environ["CASHFREE_CLIENT_SECRET"] = "cf_test_client_secret"
os.environ["PHONEPE_CALLBACK_USERNAME"] = "phonepe_user"
os.environ["PHONEPE_CALLBACK_PASSWORD"] = "phonepe_pass"
for _name in ("RAZORPAY_API_KEY", "RAZORPAY_API_SECRET", "CASHFREE_CLIENT_ID",
              "PHONEPE_CLIENT_ID", "PHONEPE_CLIENT_SECRET"):
    os.environ[_name] = ""

import pytest

from payrecon.database import Base, SessionLocal, engine, init_db
from payrecon.gateways.base import GatewayAdapter, GatewayEvent, Ok
from payrecon.models.enums import Gateway, PaymentType, TransactionStatus
from payrecon.services.payment_ledger import PaymentLedger
from payrecon.services.payment_service import PaymentService
from payrecon.utils.hashing import hmac_sha256_base64, hmac_sha256_hex, sha256_hex

RAZORPAY_SECRET = os.environ["RAZORPAY_WEBHOOK_SECRET"]
CASHFREE_SECRET = os.environ["CASHFREE_CLIENT_SECRET"]
PHONEPE_AUTH = sha256_hex("phonepe_user:phonepe_pass")


@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory connection."""
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def ledger(db, dispatcher):
    return PaymentLedger(db, dispatcher=dispatcher)


@pytest.fixture
def payment_service(db, ledger):
    return PaymentService(db, ledger=ledger)


@pytest.fixture
def full_payment(ledger):
    return ledger.create_payment(500000, PaymentType.FULL_PAYMENT.value)


@pytest.fixture
def installment_payment(ledger):
    return ledger.create_payment(500001, PaymentType.INSTALLMENTS.value)


def register_link(service, payment, link_id, gateway=Gateway.RAZORPAY, expires_in=timedelta(hours=1)):
    return service.register_payment_link(
        payment.id,
        gateway=gateway,
        link_id=link_id,
        expires_at=datetime.utcnow() + expires_in,
        link_url=f"https://pay.example.com/{link_id}",
        link_status="created",
    )


def gateway_event(link_id, status=TransactionStatus.SUCCESS, gateway=Gateway.RAZORPAY, **fields):
    return GatewayEvent(gateway=gateway, external_id=link_id, status=status, **fields)


def stub_adapter(result=None, side_effect=None):
    """Adapter whose status query returns a fixed result."""
    adapter = MagicMock(spec=GatewayAdapter)
    if side_effect is not None:
        adapter.fetch_status.side_effect = side_effect
    else:
        adapter.fetch_status.return_value = result
    return adapter


def paid_result(link_id, gateway=Gateway.RAZORPAY):
    return Ok(gateway_event(link_id, TransactionStatus.SUCCESS, gateway=gateway, link_status="paid"))


# ─── Webhook payloads ───

def razorpay_payload(link_id, event="payment_link.paid", reference_id=None, payment_id="pay_001"):
    return {
        "entity": "event",
        "event": event,
        "payload": {
            "payment_link": {
                "entity": {
                    "id": link_id,
                    "status": event.split(".", 1)[1],
                    "amount": 500000,
                    "amount_paid": 500000,
                    "reference_id": reference_id,
                }
            },
            "payment": {
                "entity": {
                    "id": payment_id,
                    "status": "captured",
                    "created_at": 1760000000,
                    "acquirer_data": {"rrn": "RRN123"},
                }
            },
        },
    }


def razorpay_request(payload, secret=RAZORPAY_SECRET):
    body = json.dumps(payload).encode("utf-8")
    return body, {"x-razorpay-signature": hmac_sha256_hex(secret, body), "content-type": "application/json"}


def cashfree_payload(link_id, transaction_status="SUCCESS", link_status="PAID", reference_id=None,
                     amount_paid="5000.00", link_amount="5000.00"):
    return {
        "type": "PAYMENT_LINK_EVENT",
        "event_time": "2025-10-01T10:00:00+05:30",
        "data": {
            "link_id": link_id,
            "link_status": link_status,
            "link_amount": link_amount,
            "link_amount_paid": amount_paid,
            "link_notes": {"referenceId": reference_id} if reference_id else {},
            "order": {
                "order_id": "order_001",
                "transaction_id": 998877,
                "transaction_status": transaction_status,
            },
        },
    }


def cashfree_request(payload, secret=CASHFREE_SECRET, timestamp="1760000000"):
    body = json.dumps(payload).encode("utf-8")
    signature = hmac_sha256_base64(secret, timestamp.encode("utf-8") + body)
    return body, {
        "x-webhook-signature": signature,
        "x-webhook-timestamp": timestamp,
        "content-type": "application/json",
    }


def phonepe_payload(order_id, state="COMPLETED"):
    return {
        "type": "CHECKOUT_ORDER_COMPLETED",
        "payload": {
            "merchantOrderId": order_id,
            "orderId": "OMO123",
            "state": state,
            "amount": 500000,
            "paymentDetails": [
                {"transactionId": "OM12345", "paymentMode": "UPI_QR", "state": state,
                 "rail": {"type": "UPI", "utr": "UTR555"}},
            ],
        },
    }


def phonepe_request(payload, authorization=PHONEPE_AUTH):
    body = json.dumps(payload).encode("utf-8")
    return body, {"Authorization": authorization, "content-type": "application/json"}
