"""Two-step human confirmation before funds move"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.exceptions import ConfirmationStateError, InvalidSecretFormatError
from wallet_transfer.domain.fees import FeeCalculator
from wallet_transfer.domain.models import (
    AuthorizedTransfer,
    FrozenTransfer,
    PaymentChannel,
    TransferCategory,
    TransferRequest,
)
from wallet_transfer.domain.validation import ValidationResult


class GateState(str, Enum):
    AWAITING_REVIEW = "awaiting_review"
    AWAITING_SECRET = "awaiting_secret"
    AUTHORIZED = "authorized"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ConfirmationSummary:
    """What the user is shown and agrees to"""

    request_id: str
    category: TransferCategory
    amount_minor: int
    fee_minor: int
    total_debit_minor: int
    recipient_name: str
    narration: str


def freeze_transfer(
    request: TransferRequest,
    fee_calculator: FeeCalculator,
    channel: PaymentChannel = PaymentChannel.BANK_TRANSFER,
) -> FrozenTransfer:
    """Quote fees once and pin them to the request"""
    quote = fee_calculator.compute(request.amount_minor, request.category, channel)
    return FrozenTransfer(request=request, quote=quote)


def idempotency_key(request_id: str, attempt: int) -> str:
    """Deterministic per-attempt key; withhold and refund keys are derived from it"""
    return f"{request_id}:{attempt}"


class ConfirmationGate:
    """
    AWAITING_REVIEW → AWAITING_SECRET → AUTHORIZED, cancellable before AUTHORIZED.

    The gate only ensures a user-entered secret is attached; the wallet
    service verifies it.

    key_attempt is the attempt whose idempotency key the next authorization
    uses. It is None after a definite decline, so the next attempt gets its
    own key, and kept after an unconfirmed withhold so the retried debit is
    deduplicated by the wallet.
    """

    def __init__(
        self,
        transfer: FrozenTransfer,
        state: GateState = GateState.AWAITING_REVIEW,
        attempt: int = 0,
        pin_length: Optional[int] = None,
        key_attempt: Optional[int] = None,
    ):
        self.transfer = transfer
        self.state = state
        self.attempt = attempt
        self.key_attempt = key_attempt
        self.pin_length = pin_length or settings.pin_length

    @classmethod
    def open(cls, transfer: FrozenTransfer, validation: ValidationResult, pin_length: Optional[int] = None):
        if not validation.ok:
            raise ConfirmationStateError(f"Cannot review a transfer that failed validation: {validation.code.value}")
        return cls(transfer, pin_length=pin_length)

    def summary(self) -> ConfirmationSummary:
        request = self.transfer.request
        return ConfirmationSummary(
            request_id=request.request_id,
            category=request.category,
            amount_minor=request.amount_minor,
            fee_minor=self.transfer.quote.fee_minor,
            total_debit_minor=self.transfer.quote.total_debit_minor,
            recipient_name=request.recipient_name,
            narration=request.narration,
        )

    def confirm_review(self) -> None:
        self._require(GateState.AWAITING_REVIEW, "confirm review")
        self.state = GateState.AWAITING_SECRET

    def supply_secret(self, secret: str) -> AuthorizedTransfer:
        self._require(GateState.AWAITING_SECRET, "supply a PIN")
        if secret is None or len(secret) != self.pin_length or not secret.isdigit():
            raise InvalidSecretFormatError(f"PIN must be {self.pin_length} digits")

        self.attempt += 1
        self.key_attempt = self.key_attempt or self.attempt
        self.state = GateState.AUTHORIZED
        return AuthorizedTransfer(
            transfer=self.transfer,
            attempt=self.attempt,
            idempotency_key=idempotency_key(self.transfer.request_id, self.key_attempt),
            secret=secret,
        )

    def reopen_for_secret(self, keep_key: bool = False) -> None:
        """
        Allow another PIN attempt on the same frozen transfer.

        keep_key=False after the wallet declined without debiting (wrong PIN,
        insufficient funds); keep_key=True when the withhold result is unknown.
        """
        self._require(GateState.AUTHORIZED, "re-enter a PIN")
        if not keep_key:
            self.key_attempt = None
        self.state = GateState.AWAITING_SECRET

    def cancel(self) -> None:
        if self.state not in (GateState.AWAITING_REVIEW, GateState.AWAITING_SECRET):
            raise ConfirmationStateError(f"Cannot cancel a transfer in state {self.state.value}")
        if self.key_attempt is not None:
            raise ConfirmationStateError("Cannot cancel while an earlier debit is unconfirmed")
        self.state = GateState.CANCELLED

    def _require(self, expected: GateState, action: str) -> None:
        if self.state != expected:
            raise ConfirmationStateError(f"Cannot {action} in state {self.state.value}")
