"""SQLAlchemy ORM models for transfer intents, outcomes, saved recipients, refunds and receipts"""

import uuid
from sqlalchemy import Column, BigInteger, Boolean, DateTime, Integer, Text, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TransferIntent(Base):
    """Frozen transfer request and its confirmation gate state"""

    __tablename__ = "transfer_intent"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    category = Column(Text, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    fee_minor = Column(BigInteger, nullable=False)
    total_debit_minor = Column(BigInteger, nullable=False)
    narration = Column(Text, nullable=False)
    recipient = Column(JSON, nullable=False)
    save_recipient = Column(Boolean, nullable=False, default=False)
    save_as_default = Column(Boolean, nullable=False, default=False)
    gate_state = Column(Text, nullable=False, default="awaiting_review")
    attempt = Column(Integer, nullable=False, default=0)
    # Attempt whose idempotency key the next authorization reuses
    key_attempt = Column(Integer, nullable=True)
    consumed = Column(Boolean, nullable=False, default=False)
    needs_reconciliation = Column(Boolean, nullable=False, default=False, index=True)
    reconciliation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TransferOutcomeRecord(Base):
    """Audit trail: one row per orchestration attempt, never updated"""

    __tablename__ = "transfer_outcome"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    attempt = Column(Integer, nullable=False)
    state = Column(Text, nullable=False)
    gateway_reference = Column(Text, nullable=True)
    refund_reference = Column(Text, nullable=True)
    failure_kind = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    transitions = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (UniqueConstraint("request_id", "attempt", name="uq_transfer_outcome_attempt"),)


class SavedRecipientRecord(Base):
    """Saved external bank account or peer beneficiary"""

    __tablename__ = "saved_recipient"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    category = Column(Text, nullable=False)
    # bank_code:account_number for bank accounts, platform_account_id for peers
    identity_key = Column(Text, nullable=False)
    account_number = Column(Text, nullable=False)
    account_name = Column(Text, nullable=False)
    bank_code = Column(Text, nullable=True)
    bank_name = Column(Text, nullable=True)
    platform_account_id = Column(Text, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("owner_id", "category", "identity_key", name="uq_saved_recipient_identity"),
    )


class PendingRefundRecord(Base):
    """Refund queue with retry tracking for FAILED_REFUND_PENDING outcomes"""

    __tablename__ = "pending_refund"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    owner_id = Column(Text, nullable=False, index=True)
    gateway_reference = Column(Text, nullable=False, unique=True)
    idempotency_key = Column(Text, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    confirmation = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TransferReceiptRecord(Base):
    """Paid receipt, at most one per settled transfer"""

    __tablename__ = "transfer_receipt"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    owner_id = Column(Text, nullable=False, index=True)
    receipt_number = Column(Text, nullable=False, unique=True)
    fee_minor = Column(BigInteger, nullable=False)
    charge_reference = Column(Text, nullable=False)
    recipient_name = Column(Text, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    gateway_reference = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
