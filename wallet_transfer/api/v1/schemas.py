"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Annotated, List, Literal, Optional, Union
from wallet_transfer.domain.models import TransferCategory


class BankRecipientIn(BaseModel):
    """
    Bank account recipient as entered by the user.

    The account name is never accepted from the client; it comes from the
    sender's current verification of exactly this bank code and number.
    """

    type: Literal["bank"] = "bank"
    bank_code: str = ""
    account_number: str = ""
    bank_name: Optional[str] = None


class PlatformRecipientIn(BaseModel):
    """Platform wallet recipient as entered by the user; the wallet id comes from verification"""

    type: Literal["platform"] = "platform"
    query: str = Field("", description="Recipient wallet account number as typed")


RecipientIn = Annotated[Union[BankRecipientIn, PlatformRecipientIn], Field(discriminator="type")]


class TransferCreateRequest(BaseModel):
    """Request body for POST /v1/transfers"""

    owner_id: str = Field(..., min_length=1, description="Sending user identifier")
    category: TransferCategory
    amount_minor: int = Field(..., description="Amount in minor units")
    narration: str = ""
    # Omitted for self_account transfers
    recipient: Optional[RecipientIn] = None
    save_recipient: bool = False
    # Only applies when save_recipient is set
    save_as_default: bool = False


class ReviewResponse(BaseModel):
    """Frozen summary the user confirms; amounts never change after this"""

    request_id: str
    gate_state: str
    category: TransferCategory
    amount_minor: int
    fee_minor: int
    total_debit_minor: int
    recipient_name: str
    narration: str


class ValidationIssueSchema(BaseModel):
    code: str
    field: str
    message: str


class OwnerRequest(BaseModel):
    """Body for confirm/cancel"""

    owner_id: str = Field(..., min_length=1)


class SubmitRequest(BaseModel):
    """Body for POST /v1/transfers/{request_id}/submit"""

    owner_id: str = Field(..., min_length=1)
    pin: str = Field(..., description="Transaction PIN")


class OutcomeResponse(BaseModel):
    """Terminal result of a transfer attempt"""

    request_id: str
    attempt: int
    state: str
    gateway_reference: Optional[str] = None
    refund_reference: Optional[str] = None
    failure_kind: Optional[str] = None
    failure_reason: Optional[str] = None
    transitions: List[str] = []
    recipient_saved: Optional[bool] = None
    warning: Optional[str] = None


class CancelResponse(BaseModel):
    request_id: str
    gate_state: str


class VerificationResponse(BaseModel):
    """Response for GET /v1/recipients/resolve"""

    query_key: str
    status: str
    resolved_name: Optional[str] = None
    platform_account_id: Optional[str] = None
    generation: int
    message: Optional[str] = None
    current: bool


class SavedRecipientSchema(BaseModel):
    id: str
    category: TransferCategory
    account_number: str
    account_name: str
    bank_code: Optional[str] = None
    bank_name: Optional[str] = None
    platform_account_id: Optional[str] = None
    is_default: bool
    created_at: Optional[datetime] = None


class SavedRecipientListResponse(BaseModel):
    owner_id: str
    category: TransferCategory
    recipients: List[SavedRecipientSchema]


class ReconciliationResponse(BaseModel):
    refunded: int
    failed: int
    escalated: int
    skipped: int


class FlaggedTransferSchema(BaseModel):
    request_id: str
    owner_id: str
    total_debit_minor: int
    gate_state: str
    attempt: int
    reason: str


class FlaggedTransferListResponse(BaseModel):
    transfers: List[FlaggedTransferSchema]


class ReceiptResponse(BaseModel):
    """Paid receipt for a settled transfer"""

    receipt_number: str
    request_id: str
    recipient_name: str
    amount_minor: int
    fee_minor: int
    gateway_reference: Optional[str] = None
    charge_reference: str
    created_at: Optional[datetime] = None
