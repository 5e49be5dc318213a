"""
Gateway adapters, built from settings.
"""
from functools import lru_cache
from typing import Dict

from payrecon.config import Settings, get_settings
from payrecon.gateways.base import GatewayAdapter, GatewayEvent, GatewayResult, Ok, Err
from payrecon.gateways.cashfree import CashfreeAdapter, CashfreeClient
from payrecon.gateways.phonepe import PhonePeAdapter, PhonePeClient, TokenCache
from payrecon.gateways.razorpay import RazorpayAdapter, RazorpayClient
from payrecon.models.enums import Gateway


def build_adapters(settings: Settings) -> Dict[Gateway, GatewayAdapter]:
    timeout = settings.GATEWAY_TIMEOUT_SECONDS

    razorpay_client = None
    if settings.RAZORPAY_API_KEY and settings.RAZORPAY_API_SECRET:
        razorpay_client = RazorpayClient(
            settings.RAZORPAY_API_KEY, settings.RAZORPAY_API_SECRET,
            settings.RAZORPAY_BASE_URL, timeout,
        )

    cashfree_client = None
    if settings.CASHFREE_CLIENT_ID and settings.CASHFREE_CLIENT_SECRET:
        cashfree_client = CashfreeClient(
            settings.CASHFREE_CLIENT_ID, settings.CASHFREE_CLIENT_SECRET,
            settings.CASHFREE_ENVIRONMENT, settings.CASHFREE_API_VERSION, timeout,
        )

    phonepe_client = None
    if settings.PHONEPE_CLIENT_ID and settings.PHONEPE_CLIENT_SECRET:
        phonepe_client = PhonePeClient(
            settings.PHONEPE_CLIENT_ID, settings.PHONEPE_CLIENT_SECRET,
            settings.PHONEPE_CLIENT_VERSION, settings.PHONEPE_ENV, timeout,
        )

    return {
        Gateway.RAZORPAY: RazorpayAdapter(settings.RAZORPAY_WEBHOOK_SECRET, razorpay_client),
        Gateway.CASHFREE: CashfreeAdapter(settings.CASHFREE_CLIENT_SECRET, cashfree_client),
        Gateway.PHONEPE: PhonePeAdapter(
            settings.PHONEPE_CALLBACK_USERNAME, settings.PHONEPE_CALLBACK_PASSWORD, phonepe_client,
        ),
    }


def close_adapters(adapters: Dict[Gateway, GatewayAdapter]) -> None:
    for adapter in adapters.values():
        adapter.close()


@lru_cache()
def get_adapters() -> Dict[Gateway, GatewayAdapter]:
    """Process-wide adapters; each owns its HTTP client and (PhonePe) token cache."""
    return build_adapters(get_settings())


__all__ = [
    "GatewayAdapter", "GatewayEvent", "GatewayResult", "Ok", "Err",
    "RazorpayAdapter", "RazorpayClient", "CashfreeAdapter", "CashfreeClient",
    "PhonePeAdapter", "PhonePeClient", "TokenCache",
    "build_adapters", "close_adapters", "get_adapters",
]
