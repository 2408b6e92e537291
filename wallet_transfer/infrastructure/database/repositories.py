"""Data access layer for transfer entities"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from wallet_transfer.domain.exceptions import DuplicateRecipientError, SavedRecipientNotFoundError
from wallet_transfer.domain.models import (
    BankRecipient,
    FailureKind,
    FeeQuote,
    FlaggedTransfer,
    FrozenTransfer,
    OutcomeState,
    PendingRefund,
    PlatformRecipient,
    Receipt,
    Recipient,
    RefundStatus,
    SavedRecipient,
    TransferCategory,
    TransferOutcome,
    TransferRequest,
    TransferState,
)
from wallet_transfer.infrastructure.database.models import (
    PendingRefundRecord,
    SavedRecipientRecord,
    TransferIntent,
    TransferOutcomeRecord,
    TransferReceiptRecord,
)


def parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def recipient_to_json(recipient: Recipient) -> Dict[str, Any]:
    if isinstance(recipient, BankRecipient):
        return {
            "type": "bank",
            "bank_code": recipient.bank_code,
            "account_number": recipient.account_number,
            "account_name": recipient.account_name,
            "bank_name": recipient.bank_name,
        }
    return {
        "type": "platform",
        "query": recipient.query,
        "platform_account_id": recipient.platform_account_id,
        "display_name": recipient.display_name,
    }


def recipient_from_json(data: Dict[str, Any]) -> Recipient:
    if data.get("type") == "bank":
        return BankRecipient(
            bank_code=data["bank_code"],
            account_number=data["account_number"],
            account_name=data.get("account_name") or "",
            bank_name=data.get("bank_name"),
        )
    return PlatformRecipient(
        query=data["query"],
        platform_account_id=data.get("platform_account_id"),
        display_name=data.get("display_name"),
    )


class TransferIntentRepository:
    """Repository for frozen transfer requests awaiting confirmation"""

    def __init__(self, db: Session):
        self.db = db

    def create_intent(self, transfer: FrozenTransfer) -> TransferIntent:
        """Persist a frozen request; fee and total are never written again"""
        request = transfer.request
        db_intent = TransferIntent(
            id=uuid.UUID(request.request_id),
            owner_id=request.owner_id,
            category=request.category.value,
            amount_minor=request.amount_minor,
            fee_minor=transfer.quote.fee_minor,
            total_debit_minor=transfer.quote.total_debit_minor,
            narration=request.narration,
            recipient=recipient_to_json(request.recipient),
            save_recipient=request.save_recipient,
            save_as_default=request.save_as_default,
            gate_state="awaiting_review",
            attempt=0,
        )
        self.db.add(db_intent)
        self.db.flush()
        return db_intent

    def get_intent(self, request_id: str, owner_id: Optional[str] = None) -> Optional[TransferIntent]:
        intent_uuid = parse_uuid(request_id)
        if intent_uuid is None:
            return None
        query = self.db.query(TransferIntent).filter(TransferIntent.id == intent_uuid)
        if owner_id is not None:
            query = query.filter(TransferIntent.owner_id == owner_id)
        return query.first()

    def update_gate(
        self,
        intent: TransferIntent,
        gate_state: str,
        attempt: int,
        key_attempt: Optional[int] = None,
        consumed: bool = False,
    ) -> None:
        intent.gate_state = gate_state
        intent.attempt = attempt
        intent.key_attempt = key_attempt
        intent.consumed = consumed
        self.db.flush()

    def flag_for_reconciliation(self, intent: TransferIntent, reason: str, consumed: bool = False) -> None:
        """Mark an intent whose money state an operator must confirm"""
        intent.needs_reconciliation = True
        intent.reconciliation_reason = reason
        if consumed:
            intent.consumed = True
        self.db.flush()

    def clear_reconciliation_flag(self, intent: TransferIntent) -> None:
        intent.needs_reconciliation = False
        intent.reconciliation_reason = None
        self.db.flush()

    def list_flagged(self) -> List[FlaggedTransfer]:
        intents = (
            self.db.query(TransferIntent)
            .filter(TransferIntent.needs_reconciliation.is_(True))
            .order_by(TransferIntent.created_at.asc())
            .all()
        )
        return [
            FlaggedTransfer(
                request_id=str(intent.id),
                owner_id=intent.owner_id,
                total_debit_minor=intent.total_debit_minor,
                gate_state=intent.gate_state,
                attempt=intent.attempt,
                reason=intent.reconciliation_reason or "",
            )
            for intent in intents
        ]

    def delete_intent(self, intent: TransferIntent) -> None:
        self.db.delete(intent)
        self.db.flush()

    @staticmethod
    def to_frozen(intent: TransferIntent) -> FrozenTransfer:
        request = TransferRequest(
            request_id=str(intent.id),
            owner_id=intent.owner_id,
            category=TransferCategory(intent.category),
            amount_minor=intent.amount_minor,
            narration=intent.narration,
            recipient=recipient_from_json(intent.recipient),
            save_recipient=intent.save_recipient,
            save_as_default=intent.save_as_default,
        )
        return FrozenTransfer(
            request=request,
            quote=FeeQuote(fee_minor=intent.fee_minor, total_debit_minor=intent.total_debit_minor),
        )


class OutcomeRepository:
    """Append-only store of transfer outcomes"""

    def __init__(self, db: Session):
        self.db = db

    def record_outcome(self, outcome: TransferOutcome) -> TransferOutcomeRecord:
        db_outcome = TransferOutcomeRecord(
            request_id=uuid.UUID(outcome.request_id),
            attempt=outcome.attempt,
            state=outcome.state.value,
            gateway_reference=outcome.gateway_reference,
            refund_reference=outcome.refund_reference,
            failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
            failure_reason=outcome.failure_reason,
            transitions=[state.value for state in outcome.transitions],
        )
        self.db.add(db_outcome)
        self.db.flush()
        return db_outcome

    def get_latest(self, request_id: str) -> Optional[TransferOutcome]:
        """Most recent attempt's outcome for a request"""
        request_uuid = parse_uuid(request_id)
        if request_uuid is None:
            return None
        record = (
            self.db.query(TransferOutcomeRecord)
            .filter(TransferOutcomeRecord.request_id == request_uuid)
            .order_by(TransferOutcomeRecord.attempt.desc())
            .first()
        )
        if record is None:
            return None
        return TransferOutcome(
            request_id=str(record.request_id),
            attempt=record.attempt,
            state=OutcomeState(record.state),
            gateway_reference=record.gateway_reference,
            refund_reference=record.refund_reference,
            failure_kind=FailureKind(record.failure_kind) if record.failure_kind else None,
            failure_reason=record.failure_reason,
            transitions=tuple(TransferState(state) for state in record.transitions or []),
        )


class SavedRecipientRepository:
    """Saved external accounts and peer beneficiaries per owner"""

    def __init__(self, db: Session):
        self.db = db

    def list(self, owner_id: str, category: TransferCategory) -> List[SavedRecipient]:
        """Default first, then newest"""
        records = (
            self.db.query(SavedRecipientRecord)
            .filter(
                SavedRecipientRecord.owner_id == owner_id,
                SavedRecipientRecord.category == category.value,
            )
            .order_by(SavedRecipientRecord.is_default.desc(), SavedRecipientRecord.created_at.desc())
            .all()
        )
        return [self._to_domain(record) for record in records]

    def suggest(self, owner_id: str, category: TransferCategory, prefix: str, limit: int = 5) -> List[SavedRecipient]:
        """Saved recipients whose account number or name starts with prefix"""
        needle = prefix.strip().lower()
        matches = [
            recipient
            for recipient in self.list(owner_id, category)
            if recipient.account_number.startswith(needle) or recipient.account_name.lower().startswith(needle)
        ]
        return matches[:limit]

    def save(
        self,
        owner_id: str,
        category: TransferCategory,
        recipient: Recipient,
        is_default: bool = False,
    ) -> SavedRecipient:
        """
        Persist a verified recipient.

        Raises:
            DuplicateRecipientError: Already saved for this owner and category
        """
        identity_key = self._identity_key(recipient)
        existing = (
            self.db.query(SavedRecipientRecord)
            .filter(
                SavedRecipientRecord.owner_id == owner_id,
                SavedRecipientRecord.category == category.value,
                SavedRecipientRecord.identity_key == identity_key,
            )
            .first()
        )
        if existing is not None:
            raise DuplicateRecipientError("This recipient is already saved")

        if is_default:
            self.db.query(SavedRecipientRecord).filter(
                SavedRecipientRecord.owner_id == owner_id,
                SavedRecipientRecord.category == category.value,
                SavedRecipientRecord.is_default.is_(True),
            ).update({"is_default": False})

        if isinstance(recipient, BankRecipient):
            record = SavedRecipientRecord(
                owner_id=owner_id,
                category=category.value,
                identity_key=identity_key,
                account_number=recipient.account_number,
                account_name=recipient.account_name,
                bank_code=recipient.bank_code,
                bank_name=recipient.bank_name,
                is_default=is_default,
            )
        else:
            record = SavedRecipientRecord(
                owner_id=owner_id,
                category=category.value,
                identity_key=identity_key,
                account_number=recipient.query,
                account_name=recipient.display_name or "",
                platform_account_id=recipient.platform_account_id,
                is_default=is_default,
            )

        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRecipientError("This recipient is already saved") from e
        return self._to_domain(record)

    def remove(self, owner_id: str, recipient_id: str) -> None:
        """
        Raises:
            SavedRecipientNotFoundError: Unknown id or owned by someone else
        """
        record_uuid = parse_uuid(recipient_id)
        record = None
        if record_uuid is not None:
            record = (
                self.db.query(SavedRecipientRecord)
                .filter(SavedRecipientRecord.id == record_uuid, SavedRecipientRecord.owner_id == owner_id)
                .first()
            )
        if record is None:
            raise SavedRecipientNotFoundError(f"Saved recipient {recipient_id} not found")
        self.db.delete(record)
        self.db.flush()

    @staticmethod
    def _identity_key(recipient: Recipient) -> str:
        if isinstance(recipient, BankRecipient):
            return f"{recipient.bank_code}:{recipient.account_number}"
        return recipient.platform_account_id or recipient.query

    @staticmethod
    def _to_domain(record: SavedRecipientRecord) -> SavedRecipient:
        return SavedRecipient(
            id=str(record.id),
            owner_id=record.owner_id,
            category=TransferCategory(record.category),
            account_number=record.account_number,
            account_name=record.account_name,
            bank_code=record.bank_code,
            bank_name=record.bank_name,
            platform_account_id=record.platform_account_id,
            is_default=record.is_default,
            created_at=record.created_at,
        )


class PendingRefundRepository:
    """Reconciliation queue for refunds that failed inline"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, outcome: TransferOutcome, owner_id: str, amount_minor: int, idempotency_key: str) -> PendingRefund:
        return self.enqueue_refund(outcome.request_id, owner_id, outcome.gateway_reference, amount_minor, idempotency_key)

    def enqueue_refund(
        self,
        request_id: str,
        owner_id: str,
        reference: str,
        amount_minor: int,
        idempotency_key: str,
    ) -> PendingRefund:
        """Queue a refund of a withheld reference; one entry per reference"""
        existing = (
            self.db.query(PendingRefundRecord)
            .filter(PendingRefundRecord.gateway_reference == reference)
            .first()
        )
        if existing is not None:
            return self._to_domain(existing)

        record = PendingRefundRecord(
            request_id=uuid.UUID(request_id),
            owner_id=owner_id,
            gateway_reference=reference,
            idempotency_key=idempotency_key,
            amount_minor=amount_minor,
            status=RefundStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(record)
        self.db.flush()
        return self._to_domain(record)

    def list_pending(self) -> List[PendingRefund]:
        records = (
            self.db.query(PendingRefundRecord)
            .filter(PendingRefundRecord.status == RefundStatus.PENDING.value)
            .order_by(PendingRefundRecord.created_at.asc())
            .all()
        )
        return [self._to_domain(record) for record in records]

    def list_by_status(self, status: RefundStatus) -> List[PendingRefund]:
        records = self.db.query(PendingRefundRecord).filter(PendingRefundRecord.status == status.value).all()
        return [self._to_domain(record) for record in records]

    def mark_refunded(self, refund_id: str, confirmation: str) -> None:
        record = self._get(refund_id)
        record.status = RefundStatus.REFUNDED.value
        record.confirmation = confirmation
        record.attempts += 1
        record.last_attempt_at = datetime.now(timezone.utc)
        self.db.flush()

    def record_failure(self, refund_id: str, error: str, escalate: bool) -> None:
        record = self._get(refund_id)
        record.attempts += 1
        record.last_attempt_at = datetime.now(timezone.utc)
        record.last_error = error
        if escalate:
            record.status = RefundStatus.ESCALATED.value
        self.db.flush()

    def _get(self, refund_id: str) -> PendingRefundRecord:
        return self.db.query(PendingRefundRecord).filter(PendingRefundRecord.id == uuid.UUID(refund_id)).one()

    @staticmethod
    def _to_domain(record: PendingRefundRecord) -> PendingRefund:
        return PendingRefund(
            id=str(record.id),
            request_id=str(record.request_id),
            owner_id=record.owner_id,
            reference=record.gateway_reference,
            idempotency_key=record.idempotency_key,
            amount_minor=record.amount_minor,
            status=RefundStatus(record.status),
            attempts=record.attempts,
            last_attempt_at=record.last_attempt_at,
            last_error=record.last_error,
        )


class ReceiptRepository:
    """Paid receipts for settled transfers"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_transfer(self, request_id: str, owner_id: str) -> Optional[Receipt]:
        request_uuid = parse_uuid(request_id)
        if request_uuid is None:
            return None
        record = (
            self.db.query(TransferReceiptRecord)
            .filter(TransferReceiptRecord.request_id == request_uuid, TransferReceiptRecord.owner_id == owner_id)
            .first()
        )
        return self._to_domain(record) if record else None

    def create(
        self,
        transfer: FrozenTransfer,
        outcome: TransferOutcome,
        fee_minor: int,
        charge_reference: str,
    ) -> Receipt:
        request = transfer.request
        record = TransferReceiptRecord(
            request_id=uuid.UUID(request.request_id),
            owner_id=request.owner_id,
            receipt_number=f"RCPT-{uuid.uuid4().hex[:12].upper()}",
            fee_minor=fee_minor,
            charge_reference=charge_reference,
            recipient_name=request.recipient_name,
            amount_minor=request.amount_minor,
            gateway_reference=outcome.gateway_reference,
        )
        self.db.add(record)
        self.db.flush()
        return self._to_domain(record)

    @staticmethod
    def _to_domain(record: TransferReceiptRecord) -> Receipt:
        return Receipt(
            id=str(record.id),
            request_id=str(record.request_id),
            owner_id=record.owner_id,
            receipt_number=record.receipt_number,
            fee_minor=record.fee_minor,
            charge_reference=record.charge_reference,
            recipient_name=record.recipient_name,
            amount_minor=record.amount_minor,
            gateway_reference=record.gateway_reference,
            created_at=record.created_at,
        )
