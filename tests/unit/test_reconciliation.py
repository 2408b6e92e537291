"""Unit tests for refund reconciliation"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List
from wallet_transfer.domain.exceptions import RefundFailedError
from wallet_transfer.domain.models import PendingRefund, RefundStatus
from wallet_transfer.domain.reconciliation import RefundReconciler

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryRefundQueue:
    def __init__(self, entries: List[PendingRefund]):
        self.entries: Dict[str, PendingRefund] = {entry.id: entry for entry in entries}
        self.confirmations: Dict[str, str] = {}

    def list_pending(self) -> List[PendingRefund]:
        return [entry for entry in self.entries.values() if entry.status == RefundStatus.PENDING]

    def mark_refunded(self, refund_id: str, confirmation: str) -> None:
        entry = self.entries[refund_id]
        self.entries[refund_id] = replace(entry, status=RefundStatus.REFUNDED, attempts=entry.attempts + 1)
        self.confirmations[refund_id] = confirmation

    def record_failure(self, refund_id: str, error: str, escalate: bool) -> None:
        entry = self.entries[refund_id]
        self.entries[refund_id] = replace(
            entry,
            status=RefundStatus.ESCALATED if escalate else RefundStatus.PENDING,
            attempts=entry.attempts + 1,
            last_attempt_at=NOW,
            last_error=error,
        )


def pending(reference="WD_1", attempts=0, last_attempt_at=None) -> PendingRefund:
    return PendingRefund(
        id=f"refund_{reference}",
        request_id="7f1c5a52-9d0e-4d59-9e0f-3f7f5b0d9a11",
        owner_id="user_1",
        reference=reference,
        idempotency_key=f"7f1c5a52:1:abc:refund:{reference}",
        amount_minor=7025,
        attempts=attempts,
        last_attempt_at=last_attempt_at,
    )


async def test_refunds_with_original_idempotency_key(gateway):
    gateway.refund = _refund_recorder(gateway)
    entry = pending()
    queue = InMemoryRefundQueue([entry])

    report = await RefundReconciler(gateway, queue, clock=lambda: NOW).run_once()

    assert report.refunded == [entry.id]
    assert gateway.refund_calls == [("WD_1", entry.idempotency_key)]
    assert queue.entries[entry.id].status == RefundStatus.REFUNDED
    assert queue.confirmations[entry.id] == "RF_WD_1"


async def test_failed_retry_stays_pending(gateway):
    gateway.refund_error = RefundFailedError("wallet 503")
    entry = pending()
    queue = InMemoryRefundQueue([entry])

    report = await RefundReconciler(gateway, queue, max_attempts=3, clock=lambda: NOW).run_once()

    assert report.failed == [entry.id]
    assert queue.entries[entry.id].status == RefundStatus.PENDING
    assert queue.entries[entry.id].attempts == 1
    assert queue.entries[entry.id].last_error == "wallet 503"


async def test_escalates_after_max_attempts(gateway):
    gateway.refund_error = RefundFailedError("wallet 503")
    entry = pending(attempts=2, last_attempt_at=NOW - timedelta(hours=1))
    queue = InMemoryRefundQueue([entry])

    report = await RefundReconciler(gateway, queue, max_attempts=3, clock=lambda: NOW).run_once()

    assert report.escalated == [entry.id]
    assert queue.entries[entry.id].status == RefundStatus.ESCALATED
    assert queue.list_pending() == []


async def test_backoff_skips_entries_not_yet_due(gateway):
    # Third attempt waits base * 2**2 = 40s after the second
    entry = pending(attempts=3, last_attempt_at=NOW - timedelta(seconds=30))
    queue = InMemoryRefundQueue([entry])

    reconciler = RefundReconciler(gateway, queue, max_attempts=5, backoff_base=10, clock=lambda: NOW)
    report = await reconciler.run_once()

    assert report.skipped == [entry.id]
    assert gateway.refund_calls == []


def test_is_due_backoff_doubles(gateway):
    reconciler = RefundReconciler(gateway, InMemoryRefundQueue([]), backoff_base=10, clock=lambda: NOW)

    assert reconciler.is_due(pending(), NOW)
    assert reconciler.is_due(pending(attempts=1, last_attempt_at=NOW - timedelta(seconds=10)), NOW)
    assert not reconciler.is_due(pending(attempts=2, last_attempt_at=NOW - timedelta(seconds=10)), NOW)
    assert reconciler.is_due(pending(attempts=2, last_attempt_at=NOW - timedelta(seconds=20)), NOW)


def test_is_due_accepts_naive_timestamps(gateway):
    reconciler = RefundReconciler(gateway, InMemoryRefundQueue([]), backoff_base=10, clock=lambda: NOW)
    naive = (NOW - timedelta(seconds=5)).replace(tzinfo=None)

    assert not reconciler.is_due(pending(attempts=1, last_attempt_at=naive), NOW)


def _refund_recorder(gateway):
    """Refund against a reference the fake never withheld"""

    async def refund(reference, idempotency_key):
        gateway.refund_calls.append((reference, idempotency_key))
        return f"RF_{reference}"

    return refund
