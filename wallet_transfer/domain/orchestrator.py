"""Transfer orchestration - validate, withhold, route, refund on failure"""

import logging
from typing import Callable, List, Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.compensation import CompensatingTransaction, CompensationState
from wallet_transfer.domain.exceptions import InsufficientFundsError, InvalidSecretError
from wallet_transfer.domain.models import (
    AuthorizedTransfer,
    BankDestination,
    BankRecipient,
    Destination,
    FailureKind,
    OutcomeState,
    PlatformDestination,
    SenderProfile,
    TransferOutcome,
    TransferRequest,
    TransferState,
)
from wallet_transfer.domain.ports import TransferGateway
from wallet_transfer.domain.validation import TransferValidator

logger = logging.getLogger(__name__)


def build_destination(request: TransferRequest) -> Destination:
    """Bank rail for SELF_ACCOUNT / EXTERNAL_BANK, internal ledger for PEER_TO_PEER"""
    recipient = request.recipient
    if isinstance(recipient, BankRecipient):
        return BankDestination(
            bank_code=recipient.bank_code,
            account_number=recipient.account_number,
            account_name=recipient.account_name,
            narration=request.narration,
            amount_minor=request.amount_minor,
        )
    return PlatformDestination(
        platform_account_id=recipient.platform_account_id or "",
        narration=request.narration,
        amount_minor=request.amount_minor,
    )


class TransferOrchestrator:
    """
    Run one authorized transfer attempt to a terminal TransferOutcome.

    States:
        VALIDATED → AUTHORIZED → FUNDS_WITHHELD → ROUTED → SETTLED
        FUNDS_WITHHELD → REFUND_ISSUED → FAILED
        AUTHORIZED → FAILED  (withhold declined or unconfirmed; nothing to refund)

    The debit always precedes routing, and a refund is only ever issued for a
    successful debit followed by a failed route. A failed refund yields
    FAILED_REFUND_PENDING for out-of-band reconciliation; it is never retried
    here.

    A withhold that times out or fails upstream yields DEBIT_UNCONFIRMED, not
    FAILED_NO_DEBIT: the debit may have landed, so the caller must retry under
    the same idempotency key.
    """

    def __init__(
        self,
        gateway: TransferGateway,
        validator: Optional[TransferValidator] = None,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.validator = validator or TransferValidator()
        self.timeout = timeout or settings.gateway_timeout_seconds

    async def submit(self, authorized: AuthorizedTransfer, sender: SenderProfile) -> TransferOutcome:
        transfer = authorized.transfer
        request = transfer.request
        trail: List[TransferState] = []

        # 1. Re-validate the frozen request
        validation = self.validator.validate(request, sender)
        if not validation.ok:
            return self._outcome(
                authorized,
                OutcomeState.FAILED_NO_DEBIT,
                trail + [TransferState.FAILED],
                failure_kind=FailureKind.VALIDATION,
                failure_reason="; ".join(issue.message for issue in validation.issues),
            )
        if not transfer.totals_consistent():
            return self._outcome(
                authorized,
                OutcomeState.FAILED_NO_DEBIT,
                trail + [TransferState.FAILED],
                failure_kind=FailureKind.VALIDATION,
                failure_reason="Confirmed total does not match amount plus fee",
            )
        trail += [TransferState.VALIDATED, TransferState.AUTHORIZED]

        destination = build_destination(request)

        # 2-5. Withhold, route, compensate
        transaction = CompensatingTransaction(
            withhold=lambda: self.gateway.withhold(
                request.owner_id,
                transfer.total_debit_minor,
                authorized.secret,
                authorized.withhold_key,
            ),
            action=lambda reference: self.gateway.route(reference, destination),
            compensate=lambda reference: self.gateway.refund(reference, authorized.refund_key),
            timeout=self.timeout,
            on_withheld=self._record(trail, TransferState.FUNDS_WITHHELD),
        )
        result = await transaction.run()

        if result.state == CompensationState.NOT_WITHHELD:
            if isinstance(result.error, (InvalidSecretError, InsufficientFundsError)):
                return self._outcome(
                    authorized,
                    OutcomeState.FAILED_NO_DEBIT,
                    trail + [TransferState.FAILED],
                    failure_kind=FailureKind.AUTHORIZATION,
                    failure_reason=result.failure_reason,
                )
            # Timeout or 5xx: the wallet may have applied the debit
            logger.warning(
                "Withhold result unknown; retry must reuse the same idempotency key",
                extra={
                    "request_id": request.request_id,
                    "attempt": authorized.attempt,
                    "idempotency_key": authorized.withhold_key,
                    "error": result.failure_reason,
                },
            )
            return self._outcome(
                authorized,
                OutcomeState.DEBIT_UNCONFIRMED,
                trail + [TransferState.FAILED],
                failure_kind=FailureKind.WITHHOLD_UNCONFIRMED,
                failure_reason=result.failure_reason,
            )

        if result.state == CompensationState.COMMITTED:
            return self._outcome(
                authorized,
                OutcomeState.SUCCEEDED,
                trail + [TransferState.ROUTED, TransferState.SETTLED],
                gateway_reference=result.confirmation or result.reference,
            )

        if result.state == CompensationState.COMPENSATED:
            return self._outcome(
                authorized,
                OutcomeState.FAILED_AND_REFUNDED,
                trail + [TransferState.REFUND_ISSUED, TransferState.FAILED],
                gateway_reference=result.reference,
                refund_reference=result.compensation_reference,
                failure_kind=FailureKind.ROUTING,
                failure_reason=result.failure_reason,
            )

        logger.error(
            "Refund failed after routing failure; funds held pending reconciliation",
            extra={
                "request_id": request.request_id,
                "attempt": authorized.attempt,
                "gateway_reference": result.reference,
                "amount_minor": transfer.total_debit_minor,
                "refund_error": str(result.compensation_error),
            },
        )
        return self._outcome(
            authorized,
            OutcomeState.FAILED_REFUND_PENDING,
            trail + [TransferState.FAILED],
            gateway_reference=result.reference,
            failure_kind=FailureKind.ROUTING,
            failure_reason=result.failure_reason,
        )

    @staticmethod
    def _record(trail: List[TransferState], state: TransferState) -> Callable[[str], None]:
        def record(_reference: str) -> None:
            trail.append(state)

        return record

    @staticmethod
    def _outcome(
        authorized: AuthorizedTransfer,
        state: OutcomeState,
        trail: List[TransferState],
        gateway_reference: Optional[str] = None,
        refund_reference: Optional[str] = None,
        failure_kind: Optional[FailureKind] = None,
        failure_reason: Optional[str] = None,
    ) -> TransferOutcome:
        return TransferOutcome(
            request_id=authorized.transfer.request_id,
            attempt=authorized.attempt,
            state=state,
            gateway_reference=gateway_reference,
            refund_reference=refund_reference,
            failure_kind=failure_kind,
            failure_reason=failure_reason,
            transitions=tuple(trail),
        )
