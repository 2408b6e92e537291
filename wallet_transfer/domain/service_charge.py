"""Charge the wallet for a paid platform service, refunding if the service fails

Receipt, contract and invoice generation deduct a fee before doing work the
user paid for. They share the transfer path's compensating transaction so a
failed service never keeps the fee.
"""

from typing import Awaitable, Callable, Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.compensation import CompensatingTransaction, CompensationResult
from wallet_transfer.domain.ports import TransferGateway


async def charge_for_service(
    gateway: TransferGateway,
    owner_id: str,
    amount_minor: int,
    secret: str,
    idempotency_key: str,
    service_call: Callable[[str], Awaitable[str]],
    timeout: Optional[float] = None,
) -> CompensationResult:
    """
    Withhold amount_minor, run service_call(reference), refund on failure.

    service_call receives the withhold reference and returns an identifier
    for whatever it produced (document id, receipt number, ...).
    """
    transaction = CompensatingTransaction(
        withhold=lambda: gateway.withhold(owner_id, amount_minor, secret, f"{idempotency_key}:withhold"),
        action=service_call,
        compensate=lambda reference: gateway.refund(reference, f"{idempotency_key}:refund"),
        timeout=timeout or settings.gateway_timeout_seconds,
    )
    return await transaction.run()
