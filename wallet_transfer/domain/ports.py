"""Contracts for the external collaborators the domain depends on"""

from typing import List, Protocol
from wallet_transfer.domain.models import Destination, PendingRefund, SenderProfile, TransferOutcome


class TransferGateway(Protocol):
    """Wallet ledger and bank-rail operations.

    withhold must be atomic and idempotent per key; implementations raise
    GatewayError subclasses, never transport exceptions.
    """

    async def withhold(self, owner_id: str, amount_minor: int, secret: str, idempotency_key: str) -> str:
        """Debit the wallet; returns the withhold reference"""
        ...

    async def route(self, reference: str, destination: Destination) -> str:
        """Move withheld funds to the destination; returns a confirmation id"""
        ...

    async def refund(self, reference: str, idempotency_key: str) -> str:
        """Return withheld funds to the sender; returns a confirmation id"""
        ...

    async def get_sender_profile(self, owner_id: str) -> SenderProfile:
        ...


class RecipientLookup(Protocol):
    """Account name enquiry for bank accounts and platform wallets"""

    async def lookup_bank_account(self, bank_code: str, account_number: str) -> str:
        """Returns the account holder name"""
        ...

    async def lookup_platform_account(self, query: str) -> tuple[str, str]:
        """Returns (platform_account_id, display_name)"""
        ...


class RefundQueue(Protocol):
    """Durable queue of refunds owed back to users"""

    def enqueue(self, outcome: TransferOutcome, owner_id: str, amount_minor: int, idempotency_key: str) -> PendingRefund:
        ...

    def list_pending(self) -> List[PendingRefund]:
        ...

    def mark_refunded(self, refund_id: str, confirmation: str) -> None:
        ...

    def record_failure(self, refund_id: str, error: str, escalate: bool) -> None:
        ...
