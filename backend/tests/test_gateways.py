"""Tests for gateway adapters: vocabulary mapping, polling clients, token cache."""

import httpx
import pytest

from payrecon.gateways import close_adapters
from payrecon.gateways.base import Err, Ok, rupees_to_paise
from payrecon.gateways.cashfree import CashfreeAdapter, CashfreeClient, link_settles
from payrecon.gateways.phonepe import PhonePeAdapter, PhonePeClient, TokenCache, map_phonepe_state
from payrecon.gateways.razorpay import RazorpayAdapter, RazorpayClient
from payrecon.models.enums import Gateway, TransactionStatus

from conftest import cashfree_payload, phonepe_payload, razorpay_payload


class TestRazorpayNormalize:
    """Webhook events → GatewayEvent."""

    adapter = RazorpayAdapter("secret")

    @pytest.mark.parametrize("event,status", [
        ("payment_link.paid", TransactionStatus.SUCCESS),
        ("payment_link.partially_paid", TransactionStatus.SUCCESS),
        ("payment_link.expired", TransactionStatus.CANCELLED),
        ("payment_link.cancelled", TransactionStatus.CANCELLED),
    ])
    def test_event_mapping(self, event, status):
        result = self.adapter.normalize(razorpay_payload("plink_1", event=event))
        assert isinstance(result, Ok)
        assert result.event.status == status
        assert result.event.external_id == "plink_1"

    def test_extracts_gateway_facts(self):
        result = self.adapter.normalize(razorpay_payload("plink_1", reference_id="ref-1"))
        event = result.event
        assert event.gateway == Gateway.RAZORPAY
        assert event.amount_paid == 500000
        assert event.gateway_txn_id == "pay_001"
        assert event.bank_reference == "RRN123"
        assert event.reference_id == "ref-1"
        assert event.link_status == "paid"

    def test_reference_falls_back_to_notes(self):
        payload = razorpay_payload("plink_1")
        payload["payload"]["payment_link"]["entity"]["notes"] = {"reference_id": "ref-notes"}
        assert self.adapter.normalize(payload).event.reference_id == "ref-notes"

    def test_unsupported_event_is_ignorable(self):
        result = self.adapter.normalize(razorpay_payload("plink_1", event="payment.captured"))
        assert isinstance(result, Err)
        assert result.ignorable is True

    def test_missing_link_entity_is_error(self):
        result = self.adapter.normalize({"event": "payment_link.paid", "payload": {}})
        assert isinstance(result, Err)
        assert result.ignorable is False

    def test_non_object_payload_never_raises(self):
        assert isinstance(self.adapter.normalize(["not", "a", "dict"]), Err)


class TestCashfreeNormalize:
    adapter = CashfreeAdapter("secret")

    @pytest.mark.parametrize("order_status,status", [
        ("SUCCESS", TransactionStatus.SUCCESS),
        ("FAILED", TransactionStatus.FAILED),
        ("PENDING", TransactionStatus.PENDING),
    ])
    def test_order_status_maps_one_to_one(self, order_status, status):
        result = self.adapter.normalize(cashfree_payload("cf_link_1", transaction_status=order_status))
        assert result.event.status == status

    def test_partially_paid_link_reports_amount_collected(self):
        result = self.adapter.normalize(
            cashfree_payload("cf_link_1", link_status="PARTIALLY_PAID", amount_paid="1000.00"),
        )
        assert result.event.status == TransactionStatus.SUCCESS
        assert result.event.link_status == "PARTIALLY_PAID"
        assert result.event.amount_paid == 100000

    @pytest.mark.parametrize("link_status,amount_paid,settles", [
        ("PAID", 500000, True),
        ("PARTIALLY_PAID", 100000, False),
        ("PARTIALLY_PAID", 500000, True),
        ("PARTIALLY_PAID", None, False),
    ])
    def test_link_settles(self, link_status, amount_paid, settles):
        assert link_settles(link_status, amount_paid, 500000) is settles

    def test_amount_converted_to_paise(self):
        result = self.adapter.normalize(cashfree_payload("cf_link_1", reference_id="ref-9"))
        assert result.event.amount_paid == 500000
        assert result.event.reference_id == "ref-9"
        assert result.event.gateway_txn_id == "998877"

    def test_other_event_types_ignored(self):
        payload = cashfree_payload("cf_link_1")
        payload["type"] = "PAYMENT_SUCCESS_WEBHOOK"
        result = self.adapter.normalize(payload)
        assert isinstance(result, Err) and result.ignorable

    def test_missing_data_is_error(self):
        result = self.adapter.normalize({"type": "PAYMENT_LINK_EVENT"})
        assert isinstance(result, Err) and not result.ignorable

    def test_unknown_order_status_is_error(self):
        result = self.adapter.normalize(cashfree_payload("cf_link_1", transaction_status="USER_DROPPED"))
        assert isinstance(result, Err)


class TestPhonePeNormalize:
    adapter = PhonePeAdapter("user", "pass")

    @pytest.mark.parametrize("state,status", [
        ("COMPLETED", TransactionStatus.SUCCESS),
        ("FAILED", TransactionStatus.FAILED),
        ("PENDING", TransactionStatus.PENDING),
        ("SOMETHING_NEW", TransactionStatus.PENDING),
        (None, TransactionStatus.PENDING),
    ])
    def test_state_mapping(self, state, status):
        assert map_phonepe_state(state) == status

    def test_wrapped_callback(self):
        event = self.adapter.normalize(phonepe_payload("MO-1")).event
        assert event.external_id == "MO-1"
        assert event.gateway_txn_id == "OM12345"
        assert event.bank_reference == "UTR555"
        assert event.amount_paid == 500000

    def test_inner_payload_accepted(self):
        inner = phonepe_payload("MO-2", state="FAILED")["payload"]
        event = self.adapter.normalize(inner).event
        assert event.external_id == "MO-2"
        assert event.status == TransactionStatus.FAILED

    def test_missing_order_id_is_error(self):
        assert isinstance(self.adapter.normalize({"payload": {"state": "COMPLETED"}}), Err)


class TestRupeeConversion:
    @pytest.mark.parametrize("value,expected", [
        ("5000.00", 500000), ("0.015", 2), (12, 1200), ("", None), (None, None), ("abc", None),
    ])
    def test_conversion(self, value, expected):
        assert rupees_to_paise(value) == expected


def _mock(handler):
    return httpx.MockTransport(handler)


class TestRazorpayPolling:
    def test_paid_link(self):
        def handler(request):
            assert request.url.path == "/v1/payment_links/plink_1"
            assert request.headers["authorization"].startswith("Basic ")
            return httpx.Response(200, json={
                "id": "plink_1", "status": "paid", "amount_paid": 500000, "reference_id": "ref-1",
                "payments": [{"payment_id": "pay_9", "created_at": 1760000000}],
            })

        client = RazorpayClient("key", "secret", "https://api.razorpay.com", 5, transport=_mock(handler))
        result = RazorpayAdapter("secret", client).fetch_status("plink_1")
        assert isinstance(result, Ok)
        assert result.event.status == TransactionStatus.SUCCESS
        assert result.event.gateway_txn_id == "pay_9"

    @pytest.mark.parametrize("link_status,status", [
        ("created", TransactionStatus.PENDING),
        ("expired", TransactionStatus.CANCELLED),
        ("cancelled", TransactionStatus.CANCELLED),
        ("partially_paid", TransactionStatus.SUCCESS),
    ])
    def test_link_status_vocabulary(self, link_status, status):
        client = RazorpayClient(
            "key", "secret", "https://api.razorpay.com", 5,
            transport=_mock(lambda request: httpx.Response(200, json={"id": "plink_1", "status": link_status})),
        )
        assert RazorpayAdapter("secret", client).fetch_status("plink_1").event.status == status

    def test_timeout_is_query_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = RazorpayClient("key", "secret", "https://api.razorpay.com", 5, transport=_mock(handler))
        result = RazorpayAdapter("secret", client).fetch_status("plink_1")
        assert isinstance(result, Err)
        assert result.query_failed is True

    def test_http_error_is_query_error(self):
        client = RazorpayClient(
            "key", "secret", "https://api.razorpay.com", 5,
            transport=_mock(lambda request: httpx.Response(502, text="bad gateway")),
        )
        result = RazorpayAdapter("secret", client).fetch_status("plink_1")
        assert isinstance(result, Err) and result.query_failed

    def test_unconfigured_client_is_query_error(self):
        result = RazorpayAdapter("secret").fetch_status("plink_1")
        assert isinstance(result, Err) and result.query_failed


class TestCashfreePolling:
    def test_headers_and_mapping(self):
        def handler(request):
            assert request.url.path == "/pg/links/cf_link_1"
            assert request.headers["x-client-id"] == "cid"
            assert request.headers["x-client-secret"] == "csecret"
            assert request.headers["x-api-version"] == "2025-01-01"
            return httpx.Response(200, json={"link_id": "cf_link_1", "link_status": "EXPIRED"})

        client = CashfreeClient("cid", "csecret", "sandbox", "2025-01-01", 5, transport=_mock(handler))
        result = CashfreeAdapter("csecret", client).fetch_status("cf_link_1")
        assert result.event.status == TransactionStatus.CANCELLED
        assert result.event.link_status == "EXPIRED"

    def test_non_json_body_is_query_error(self):
        client = CashfreeClient(
            "cid", "csecret", "sandbox", "2025-01-01", 5,
            transport=_mock(lambda request: httpx.Response(200, text="<html>")),
        )
        result = CashfreeAdapter("csecret", client).fetch_status("cf_link_1")
        assert isinstance(result, Err) and result.query_failed


class TestPhonePeTokenCache:
    """OAuth token is cached until close to expiry, then refreshed."""

    def _client(self, clock):
        calls = {"oauth": 0, "status": 0}

        def handler(request):
            if request.url.path.endswith("/v1/oauth/token"):
                calls["oauth"] += 1
                return httpx.Response(200, json={
                    "access_token": f"token-{calls['oauth']}",
                    "expires_at": 1000 + 3600 * calls["oauth"],
                })
            calls["status"] += 1
            assert request.headers["authorization"] == f"O-Bearer token-{calls['oauth']}"
            return httpx.Response(200, json={"orderId": "OMO1", "state": "COMPLETED", "amount": 100})

        client = PhonePeClient("cid", "csecret", 1, "SANDBOX", 5, transport=_mock(handler), clock=clock)
        return client, calls

    def test_token_reused_while_valid(self):
        now = [1000.0]
        client, calls = self._client(lambda: now[0])
        client.get_order_status("MO-1")
        now[0] = 2000.0
        client.get_order_status("MO-1")
        assert calls["oauth"] == 1
        assert calls["status"] == 2

    def test_token_refreshed_inside_safety_margin(self):
        now = [1000.0]
        client, calls = self._client(lambda: now[0])
        client.access_token()
        now[0] = 1000 + 3600 - 30  # within the 60s margin
        assert client.access_token() == "token-2"
        assert calls["oauth"] == 2
        assert client.token_cache == TokenCache("token-2", 1000 + 7200)

    def test_cache_value_validity(self):
        cache = TokenCache("abc", expires_at=500)
        assert cache.is_valid(400)
        assert not cache.is_valid(450)
        assert not TokenCache("", expires_at=10_000).is_valid(0)

    def test_status_poll_through_adapter(self):
        client, _ = self._client(lambda: 1000.0)
        result = PhonePeAdapter("user", "pass", client).fetch_status("MO-1")
        assert result.event.status == TransactionStatus.SUCCESS
        assert result.event.external_id == "MO-1"

    def test_oauth_failure_is_query_error(self):
        client = PhonePeClient(
            "cid", "csecret", 1, "SANDBOX", 5,
            transport=_mock(lambda request: httpx.Response(401, json={"message": "unauthorized"})),
        )
        result = PhonePeAdapter("user", "pass", client).fetch_status("MO-1")
        assert isinstance(result, Err) and result.query_failed


class TestClientLifecycle:
    def test_close_releases_http_clients(self):
        transport = _mock(lambda request: httpx.Response(200, json={}))
        razorpay = RazorpayClient("key", "secret", "https://api.razorpay.com", 5, transport=transport)
        phonepe = PhonePeClient("cid", "csecret", 1, "SANDBOX", 5, transport=transport)
        adapters = {
            Gateway.RAZORPAY: RazorpayAdapter("secret", razorpay),
            Gateway.PHONEPE: PhonePeAdapter("user", "pass", phonepe),
            Gateway.CASHFREE: CashfreeAdapter("secret"),
        }

        close_adapters(adapters)

        assert razorpay._http._client.is_closed
        assert phonepe._api._client.is_closed and phonepe._oauth._client.is_closed
