"""Out-of-band retry of refunds that failed inline"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.models import PendingRefund
from wallet_transfer.domain.ports import RefundQueue, TransferGateway

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    refunded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    escalated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundReconciler:
    """
    Retry FAILED_REFUND_PENDING refunds from the durable queue.

    Retry strategy:
    - Reuses the entry's original refund idempotency key, so a refund the
      gateway already applied is not applied twice
    - Exponential backoff per entry: base, 2x, 4x, ... since the last attempt
    - After max_attempts failures the entry is escalated and never retried
      automatically again
    """

    def __init__(
        self,
        gateway: TransferGateway,
        queue: RefundQueue,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.queue = queue
        self.max_attempts = max_attempts or settings.refund_max_attempts
        self.backoff_base = backoff_base if backoff_base is not None else settings.refund_backoff_base
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.clock = clock

    def is_due(self, entry: PendingRefund, now: datetime) -> bool:
        if entry.attempts == 0 or entry.last_attempt_at is None:
            return True
        last = entry.last_attempt_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        backoff = self.backoff_base * (2 ** (entry.attempts - 1))
        return now >= last + timedelta(seconds=backoff)

    async def run_once(self) -> ReconciliationReport:
        report = ReconciliationReport()
        now = self.clock()

        for entry in self.queue.list_pending():
            if not self.is_due(entry, now):
                report.skipped.append(entry.id)
                continue

            try:
                confirmation = await asyncio.wait_for(
                    self.gateway.refund(entry.reference, entry.idempotency_key),
                    timeout=self.timeout,
                )
            except Exception as e:  # every failure counts toward escalation
                attempts = entry.attempts + 1
                escalate = attempts >= self.max_attempts
                error = str(e) or type(e).__name__
                self.queue.record_failure(entry.id, error, escalate=escalate)
                if escalate:
                    report.escalated.append(entry.id)
                    logger.error(
                        "Refund escalated for manual reconciliation",
                        extra={
                            "request_id": entry.request_id,
                            "gateway_reference": entry.reference,
                            "amount_minor": entry.amount_minor,
                            "attempts": attempts,
                            "refund_error": error,
                        },
                    )
                else:
                    report.failed.append(entry.id)
                    logger.warning(
                        f"Refund retry failed: {error}",
                        extra={"request_id": entry.request_id, "attempts": attempts},
                    )
                continue

            self.queue.mark_refunded(entry.id, confirmation)
            report.refunded.append(entry.id)
            logger.info(
                "Pending refund settled",
                extra={"request_id": entry.request_id, "gateway_reference": entry.reference},
            )

        return report
