"""Structural and business-rule checks run before any money moves"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.models import (
    BankRecipient,
    PlatformRecipient,
    SenderProfile,
    TransferCategory,
    TransferRequest,
)


class ValidationCode(str, Enum):
    AMOUNT_TOO_LOW = "amount_too_low"
    NARRATION_REQUIRED = "narration_required"
    NARRATION_TOO_LONG = "narration_too_long"
    INCOMPLETE_PROFILE = "incomplete_profile"
    INVALID_RECIPIENT = "invalid_recipient"
    RECIPIENT_NOT_FOUND = "recipient_not_found"
    SELF_TRANSFER_NOT_ALLOWED = "self_transfer_not_allowed"


@dataclass(frozen=True)
class ValidationIssue:
    code: ValidationCode
    field: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def code(self) -> Optional[ValidationCode]:
        """First failing check, in evaluation order"""
        return self.issues[0].code if self.issues else None

    def has(self, code: ValidationCode) -> bool:
        return any(issue.code == code for issue in self.issues)


def is_well_formed_account_number(value: str, length: Optional[int] = None) -> bool:
    length = length or settings.account_number_length
    return len(value) == length and value.isdigit()


def is_self_reference(sender: SenderProfile, account_number: str, bank_code: Optional[str] = None) -> bool:
    """
    True when raw recipient input points back at the sender's own wallet.

    Compares the typed value, not a resolved name, so a stale verification
    can never hide a self-transfer.
    """
    value = account_number.strip()
    if not value:
        return False
    if value == sender.platform_account_id:
        return True
    if value != sender.wallet_account_number:
        return False
    # Same number at a different bank is a different account
    if bank_code and sender.wallet_bank_code:
        return bank_code == sender.wallet_bank_code
    return True


class TransferValidator:
    """
    Validate a transfer request against the sender's own account snapshot.

    Pure: no I/O, no mutation. Checks run in a fixed order and every failing
    check is reported; ValidationResult.code is the first one.
    """

    def __init__(
        self,
        min_amount_minor: Optional[int] = None,
        narration_max_length: Optional[int] = None,
        account_number_length: Optional[int] = None,
    ):
        self.min_amount_minor = min_amount_minor if min_amount_minor is not None else settings.min_transfer_minor
        self.narration_max_length = narration_max_length or settings.narration_max_length
        self.account_number_length = account_number_length or settings.account_number_length

    def validate(self, request: TransferRequest, sender: SenderProfile) -> ValidationResult:
        issues: List[ValidationIssue] = []

        if request.amount_minor is None or request.amount_minor < self.min_amount_minor:
            issues.append(
                ValidationIssue(
                    ValidationCode.AMOUNT_TOO_LOW,
                    "amount_minor",
                    f"Amount must be at least {self.min_amount_minor}",
                )
            )

        narration = (request.narration or "").strip()
        if not narration:
            issues.append(ValidationIssue(ValidationCode.NARRATION_REQUIRED, "narration", "Narration is required"))
        elif len(narration) > self.narration_max_length:
            issues.append(
                ValidationIssue(
                    ValidationCode.NARRATION_TOO_LONG,
                    "narration",
                    f"Narration must be at most {self.narration_max_length} characters",
                )
            )

        recipient = request.recipient
        wants_platform = request.category == TransferCategory.PEER_TO_PEER
        if wants_platform != isinstance(recipient, PlatformRecipient):
            issues.append(
                ValidationIssue(
                    ValidationCode.INVALID_RECIPIENT,
                    "recipient",
                    f"Recipient does not match transfer category {request.category.value}",
                )
            )
            return ValidationResult(issues)

        if self._is_self_transfer(request, sender):
            issues.append(
                ValidationIssue(
                    ValidationCode.SELF_TRANSFER_NOT_ALLOWED,
                    "recipient",
                    "You cannot transfer to your own account",
                )
            )
            return ValidationResult(issues)

        if request.category == TransferCategory.SELF_ACCOUNT:
            issues.extend(self._check_self_account(sender))
        elif request.category == TransferCategory.EXTERNAL_BANK:
            issues.extend(self._check_external_bank(recipient))
        else:
            issues.extend(self._check_peer(recipient))

        return ValidationResult(issues)

    def _is_self_transfer(self, request: TransferRequest, sender: SenderProfile) -> bool:
        recipient = request.recipient
        if isinstance(recipient, PlatformRecipient):
            if is_self_reference(sender, recipient.query):
                return True
            return recipient.platform_account_id is not None and recipient.platform_account_id == sender.platform_account_id
        # SELF_ACCOUNT legitimately targets the payout account; only the wallet itself is refused
        return is_self_reference(sender, recipient.account_number, recipient.bank_code)

    def _check_self_account(self, sender: SenderProfile) -> List[ValidationIssue]:
        payout = sender.payout_account
        if payout is None or not (payout.bank_code and payout.account_number and payout.account_name):
            return [
                ValidationIssue(
                    ValidationCode.INCOMPLETE_PROFILE,
                    "payout_account",
                    "Your bank details are incomplete",
                )
            ]
        return []

    def _check_external_bank(self, recipient: BankRecipient) -> List[ValidationIssue]:
        issues = []
        if not (recipient.bank_code and recipient.account_number and recipient.account_name):
            issues.append(
                ValidationIssue(
                    ValidationCode.INVALID_RECIPIENT,
                    "recipient",
                    "Please complete all bank fields",
                )
            )
        if recipient.account_number and not is_well_formed_account_number(
            recipient.account_number, self.account_number_length
        ):
            issues.append(
                ValidationIssue(
                    ValidationCode.INVALID_RECIPIENT,
                    "recipient.account_number",
                    f"Account number must be {self.account_number_length} digits",
                )
            )
        return issues

    def _check_peer(self, recipient: PlatformRecipient) -> List[ValidationIssue]:
        if not recipient.query or not recipient.platform_account_id:
            return [
                ValidationIssue(
                    ValidationCode.RECIPIENT_NOT_FOUND,
                    "recipient",
                    "Recipient not found or invalid",
                )
            ]
        return []
