"""Domain models - pure Python dataclasses representing transfer entities

All money values are integer minor units (kobo/cents), never floats.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union


class TransferCategory(str, Enum):
    """Where the money is going"""

    SELF_ACCOUNT = "self_account"  # user's own configured payout account
    EXTERNAL_BANK = "external_bank"
    PEER_TO_PEER = "peer_to_peer"  # another platform wallet


class PaymentChannel(str, Enum):
    """Channel the fee schedule is priced against"""

    CHECKOUT = "checkout"
    VIRTUAL_ACCOUNT = "virtual_account"
    BANK_TRANSFER = "bank_transfer"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    SELF_REFERENTIAL = "self_referential"
    ERROR = "error"


class OutcomeState(str, Enum):
    """Terminal state of one orchestration run"""

    SUCCEEDED = "succeeded"
    FAILED_AND_REFUNDED = "failed_and_refunded"
    FAILED_REFUND_PENDING = "failed_refund_pending"
    FAILED_NO_DEBIT = "failed_no_debit"
    # Withhold outcome unknown; a retry reuses the same idempotency key
    DEBIT_UNCONFIRMED = "debit_unconfirmed"


class TransferState(str, Enum):
    """Intermediate orchestration states recorded on the outcome"""

    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    FUNDS_WITHHELD = "funds_withheld"
    ROUTED = "routed"
    SETTLED = "settled"
    REFUND_ISSUED = "refund_issued"
    FAILED = "failed"


class FailureKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    ROUTING = "routing"
    WITHHOLD_UNCONFIRMED = "withhold_unconfirmed"


@dataclass(frozen=True)
class BankAccount:
    """A fully identified bank account"""

    bank_code: str
    account_number: str
    account_name: str
    bank_name: Optional[str] = None


@dataclass(frozen=True)
class BankRecipient:
    """Recipient for SELF_ACCOUNT and EXTERNAL_BANK transfers

    account_name is the name returned by the lookup service, empty until verified.
    """

    bank_code: str
    account_number: str
    account_name: str = ""
    bank_name: Optional[str] = None


@dataclass(frozen=True)
class PlatformRecipient:
    """Recipient for PEER_TO_PEER transfers

    query is what the user typed (the recipient's wallet account number);
    platform_account_id is only present once the lookup resolved it.
    """

    query: str
    platform_account_id: Optional[str] = None
    display_name: Optional[str] = None


Recipient = Union[BankRecipient, PlatformRecipient]


@dataclass(frozen=True)
class SenderProfile:
    """Snapshot of the sending user's own accounts"""

    owner_id: str
    platform_account_id: str
    wallet_account_number: str
    wallet_bank_code: Optional[str] = None
    display_name: str = ""
    payout_account: Optional[BankAccount] = None


@dataclass(frozen=True)
class TransferRequest:
    """The user's transfer intent"""

    request_id: str
    owner_id: str
    category: TransferCategory
    amount_minor: int
    narration: str
    recipient: Recipient
    save_recipient: bool = False
    save_as_default: bool = False

    @property
    def recipient_name(self) -> str:
        if isinstance(self.recipient, BankRecipient):
            return self.recipient.account_name
        return self.recipient.display_name or ""


@dataclass(frozen=True)
class FeeQuote:
    fee_minor: int
    total_debit_minor: int


@dataclass(frozen=True)
class FrozenTransfer:
    """A transfer request with its fee quote fixed at review time"""

    request: TransferRequest
    quote: FeeQuote

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def total_debit_minor(self) -> int:
        return self.quote.total_debit_minor

    def totals_consistent(self) -> bool:
        return self.quote.total_debit_minor == self.request.amount_minor + self.quote.fee_minor


@dataclass(frozen=True)
class AuthorizedTransfer:
    """A frozen transfer with a user-entered secret attached"""

    transfer: FrozenTransfer
    attempt: int
    idempotency_key: str
    secret: str = field(repr=False)

    @property
    def withhold_key(self) -> str:
        return f"{self.idempotency_key}:withhold"

    @property
    def refund_key(self) -> str:
        return f"{self.idempotency_key}:refund"


@dataclass(frozen=True)
class LookupKey:
    """Exact input a recipient lookup was issued for"""

    account_number: str
    bank_code: Optional[str] = None

    def __str__(self) -> str:
        if self.bank_code:
            return f"{self.bank_code}:{self.account_number}"
        return self.account_number


@dataclass(frozen=True)
class RecipientVerification:
    """Result of an AccountResolver lookup"""

    query_key: LookupKey
    status: VerificationStatus
    resolved_name: Optional[str] = None
    platform_account_id: Optional[str] = None
    generation: int = 0
    message: Optional[str] = None

    def matches(self, key: LookupKey) -> bool:
        return self.query_key == key


@dataclass(frozen=True)
class SavedRecipient:
    """Persisted beneficiary or external bank account"""

    id: str
    owner_id: str
    category: TransferCategory
    account_number: str
    account_name: str
    bank_code: Optional[str] = None
    bank_name: Optional[str] = None
    platform_account_id: Optional[str] = None
    is_default: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BankDestination:
    """Bank-rail routing target"""

    bank_code: str
    account_number: str
    account_name: str
    narration: str
    amount_minor: int


@dataclass(frozen=True)
class PlatformDestination:
    """Internal ledger routing target"""

    platform_account_id: str
    narration: str
    amount_minor: int


Destination = Union[BankDestination, PlatformDestination]


@dataclass(frozen=True)
class TransferOutcome:
    """Terminal, immutable record of one orchestration attempt"""

    request_id: str
    attempt: int
    state: OutcomeState
    gateway_reference: Optional[str] = None
    refund_reference: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    failure_reason: Optional[str] = None
    transitions: Tuple[TransferState, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == OutcomeState.SUCCEEDED


class RefundStatus(str, Enum):
    PENDING = "pending"
    REFUNDED = "refunded"
    ESCALATED = "escalated"  # retries exhausted, needs manual handling


@dataclass(frozen=True)
class PendingRefund:
    """Money held by the gateway that is owed back to the user"""

    id: str
    request_id: str
    owner_id: str
    reference: str
    idempotency_key: str
    amount_minor: int
    status: RefundStatus = RefundStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class FlaggedTransfer:
    """Transfer whose money state needs an operator to look at it"""

    request_id: str
    owner_id: str
    total_debit_minor: int
    gate_state: str
    attempt: int
    reason: str


@dataclass(frozen=True)
class Receipt:
    """Paid receipt for a settled transfer"""

    id: str
    request_id: str
    owner_id: str
    receipt_number: str
    fee_minor: int
    charge_reference: str
    recipient_name: str
    amount_minor: int
    gateway_reference: Optional[str] = None
    created_at: Optional[datetime] = None
