"""
Reconciliation Routes — Operational trigger for the pending-transaction sweep.
"""
from dataclasses import asdict
from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from payrecon.database import get_db
from payrecon.gateways import get_adapters
from payrecon.gateways.base import GatewayAdapter
from payrecon.models.enums import Gateway
from payrecon.schemas.schemas import SweepReportResponse
from payrecon.services.reconciliation import Reconciler

router = APIRouter(prefix="/api/reconciliation", tags=["Reconciliation"])


@router.post("/sweep", response_model=SweepReportResponse)
def run_sweep(
    db: Session = Depends(get_db),
    adapters: Dict[Gateway, GatewayAdapter] = Depends(get_adapters),
):
    """Run one sweep over stale PENDING transactions now."""
    report = Reconciler(db, adapters).sweep_pending_transactions()
    return SweepReportResponse(**asdict(report))
