"""
Error taxonomy for the reconciliation core.
Routes translate these into HTTP responses; services never return HTTP codes.
"""


class ReconciliationError(Exception):
    """Base class for every error raised by the reconciliation core."""


class SignatureError(ReconciliationError):
    """Webhook authenticity could not be established."""

    def __init__(self, gateway: str, reason: str = "Invalid signature"):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"{gateway}: {reason}")


class PayloadError(ReconciliationError):
    """Malformed payload or missing required field."""


class TransactionNotFound(ReconciliationError):
    """No live transaction matches the gateway reference."""

    def __init__(self, key: str, reason: str = "Transaction not found"):
        self.key = key
        super().__init__(f"{reason}: {key}")


class PaymentNotFound(ReconciliationError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class ObligationError(ReconciliationError):
    """The requested obligation cannot be paid (already paid, unknown installment)."""


class GatewayQueryError(ReconciliationError):
    """A gateway status query failed (network, timeout, non-2xx, unreadable body)."""

    def __init__(self, gateway: str, reason: str):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"{gateway}: {reason}")
