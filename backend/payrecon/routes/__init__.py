from payrecon.routes.webhooks import router as webhooks_router
from payrecon.routes.payment import router as payment_router
from payrecon.routes.transactions import router as transactions_router
from payrecon.routes.reconciliation import router as reconciliation_router

__all__ = ["webhooks_router", "payment_router", "transactions_router", "reconciliation_router"]
