"""
Task handlers run by the worker, keyed by task name.
"""
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from payrecon.config import Settings, get_settings
from payrecon.gateways.base import GatewayAdapter
from payrecon.models.enums import Gateway
from payrecon.services.notification_service import PAYMENT_NOTIFICATION_TASK, handle_payment_notification
from payrecon.services.payment_service import PAYMENT_LINK_EXPIRY_TASK
from payrecon.services.reconciliation import Reconciler
from payrecon.services.task_scheduler import TaskHandler, TaskScheduler

RECONCILE_PENDING_TASK = "reconcile-pending-payments"


def build_task_handlers(adapters: Optional[Dict[Gateway, GatewayAdapter]] = None) -> Dict[str, TaskHandler]:
    def check_link_expiry(db: Session, payload: dict) -> None:
        Reconciler(db, adapters).check_link_at_expiry(payload["paymentLinkId"])

    def reconcile_pending(db: Session, payload: dict) -> None:
        Reconciler(db, adapters).sweep_pending_transactions()

    return {
        PAYMENT_LINK_EXPIRY_TASK: check_link_expiry,
        RECONCILE_PENDING_TASK: reconcile_pending,
        PAYMENT_NOTIFICATION_TASK: handle_payment_notification,
    }


def register_recurring_tasks(db: Session, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    TaskScheduler(db, settings).schedule_recurring(
        RECONCILE_PENDING_TASK,
        {},
        interval=timedelta(minutes=settings.RECONCILE_INTERVAL_MINUTES),
    )
