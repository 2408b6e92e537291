"""Reconciliation endpoints - retry refunds owed back to users, list flagged transfers"""

import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from wallet_transfer.api.v1.schemas import FlaggedTransferListResponse, FlaggedTransferSchema, ReconciliationResponse
from wallet_transfer.api.dependencies import get_gateway, get_request_id
from wallet_transfer.domain.ports import TransferGateway
from wallet_transfer.domain.reconciliation import RefundReconciler
from wallet_transfer.infrastructure.database.repositories import PendingRefundRepository, TransferIntentRepository
from wallet_transfer.infrastructure.database.session import get_db
from wallet_transfer.infrastructure.observability.metrics import record_reconciliation

router = APIRouter()


@router.post("/reconciliation/refunds", response_model=ReconciliationResponse)
async def reconcile_refunds(
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransferGateway = Depends(get_gateway),
):
    """
    Run one reconciliation pass over the pending refund queue.

    Meant to be triggered by a scheduler; each pass retries due entries once
    and escalates entries that exhausted their attempts.
    """
    reconciler = RefundReconciler(gateway, PendingRefundRepository(db))
    report = await reconciler.run_once()
    db.commit()

    record_reconciliation(len(report.refunded), len(report.failed), len(report.escalated))
    logging.info(
        "Refund reconciliation pass completed",
        extra={
            "request_id": get_request_id(request),
            "refunded": len(report.refunded),
            "failed": len(report.failed),
            "escalated": len(report.escalated),
        },
    )

    return ReconciliationResponse(
        refunded=len(report.refunded),
        failed=len(report.failed),
        escalated=len(report.escalated),
        skipped=len(report.skipped),
    )


@router.get("/reconciliation/transfers", response_model=FlaggedTransferListResponse)
def list_flagged_transfers(db: Session = Depends(get_db)):
    """Transfers whose debit is unconfirmed or whose outcome could not be recorded"""
    flagged = TransferIntentRepository(db).list_flagged()
    return FlaggedTransferListResponse(
        transfers=[
            FlaggedTransferSchema(
                request_id=transfer.request_id,
                owner_id=transfer.owner_id,
                total_debit_minor=transfer.total_debit_minor,
                gate_state=transfer.gate_state,
                attempt=transfer.attempt,
                reason=transfer.reason,
            )
            for transfer in flagged
        ]
    )
