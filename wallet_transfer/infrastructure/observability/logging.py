"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from wallet_transfer.domain.models import OutcomeState, PendingRefund, TransferOutcome


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "wallet-transfer"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_transfer_outcome(
    request_id: str,
    owner_id: str,
    category: str,
    outcome: TransferOutcome,
    duration_ms: float,
) -> None:
    """Log structured transfer outcome; refund-pending is an ERROR, never INFO"""
    extra = {
        "request_id": request_id,
        "owner_id": owner_id,
        "transfer_request_id": outcome.request_id,
        "attempt": outcome.attempt,
        "step": "transfer_complete",
        "category": category,
        "outcome": outcome.state.value,
        "gateway_reference": outcome.gateway_reference,
        "failure_kind": outcome.failure_kind.value if outcome.failure_kind else None,
        "failure_reason": outcome.failure_reason,
        "transitions": [state.value for state in outcome.transitions],
        "duration_ms": duration_ms,
    }
    if outcome.state == OutcomeState.FAILED_REFUND_PENDING:
        logging.error("Transfer failed and refund is pending", extra=extra)
    elif outcome.state == OutcomeState.DEBIT_UNCONFIRMED:
        logging.warning("Transfer debit unconfirmed; awaiting retry under the same key", extra=extra)
    elif outcome.succeeded:
        logging.info("Transfer completed", extra=extra)
    else:
        logging.warning("Transfer failed", extra=extra)


def log_refund_pending(request_id: str, refund: PendingRefund) -> None:
    """Funds are held by the gateway and owed back to the user"""
    logging.error(
        "Refund queued for reconciliation",
        extra={
            "request_id": request_id,
            "owner_id": refund.owner_id,
            "transfer_request_id": refund.request_id,
            "step": "refund_pending",
            "gateway_reference": refund.reference,
            "amount_minor": refund.amount_minor,
            "refund_id": refund.id,
        },
    )
