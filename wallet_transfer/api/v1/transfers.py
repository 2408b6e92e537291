"""Transfer endpoints - review, confirm, submit, cancel, outcome, receipt"""

import time
import uuid
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wallet_transfer.api.v1.schemas import (
    BankRecipientIn,
    CancelResponse,
    OutcomeResponse,
    OwnerRequest,
    PlatformRecipientIn,
    ReceiptResponse,
    ReviewResponse,
    SubmitRequest,
    TransferCreateRequest,
    ValidationIssueSchema,
)
from wallet_transfer.api.dependencies import (
    ResolverRegistry,
    get_fee_calculator,
    get_gateway,
    get_orchestrator,
    get_request_id,
    get_resolver_registry,
)
from wallet_transfer.config import settings
from wallet_transfer.domain.compensation import CompensationState
from wallet_transfer.domain.confirmation import ConfirmationGate, GateState, freeze_transfer
from wallet_transfer.domain.exceptions import (
    ConfirmationStateError,
    DomainException,
    DuplicateRecipientError,
    GatewayUnavailableError,
    InsufficientFundsError,
    InvalidSecretError,
    InvalidSecretFormatError,
)
from wallet_transfer.domain.fees import FeeCalculator
from wallet_transfer.domain.models import (
    AuthorizedTransfer,
    BankRecipient,
    FailureKind,
    LookupKey,
    OutcomeState,
    PaymentChannel,
    PendingRefund,
    PlatformRecipient,
    Receipt,
    Recipient,
    RecipientVerification,
    SenderProfile,
    TransferCategory,
    TransferOutcome,
    TransferRequest,
    VerificationStatus,
)
from wallet_transfer.domain.orchestrator import TransferOrchestrator
from wallet_transfer.domain.ports import TransferGateway
from wallet_transfer.domain.service_charge import charge_for_service
from wallet_transfer.domain.validation import TransferValidator
from wallet_transfer.infrastructure.database.models import TransferIntent
from wallet_transfer.infrastructure.database.repositories import (
    OutcomeRepository,
    PendingRefundRepository,
    ReceiptRepository,
    SavedRecipientRepository,
    TransferIntentRepository,
)
from wallet_transfer.infrastructure.database.session import get_db
from wallet_transfer.infrastructure.observability.logging import log_refund_pending, log_transfer_outcome
from wallet_transfer.infrastructure.observability.metrics import (
    flagged_transfer_counter,
    record_outcome,
    recipient_save_failures_counter,
    service_charge_counter,
)

router = APIRouter()


def _current_verification(
    registry: ResolverRegistry,
    owner_id: str,
    category: TransferCategory,
    key: LookupKey,
) -> Optional[RecipientVerification]:
    """The sender's applied verification, only if it is VERIFIED for exactly this key"""
    resolver = registry.peek(owner_id)
    verification = resolver.current(category) if resolver else None
    if verification is None or verification.status != VerificationStatus.VERIFIED:
        return None
    if not verification.matches(key):
        return None
    return verification


def _build_recipient(
    body: TransferCreateRequest,
    sender: SenderProfile,
    registry: ResolverRegistry,
) -> Recipient:
    """
    Map the request body to a domain recipient.

    Names and wallet ids are only ever taken from the resolver. A recipient
    with no matching verification is left unresolved and fails validation.
    """
    if body.category == TransferCategory.SELF_ACCOUNT:
        payout = sender.payout_account
        if payout is None:
            return BankRecipient(bank_code="", account_number="")
        return BankRecipient(
            bank_code=payout.bank_code,
            account_number=payout.account_number,
            account_name=payout.account_name,
            bank_name=payout.bank_name,
        )

    if isinstance(body.recipient, PlatformRecipientIn):
        query = body.recipient.query.strip()
        verification = _current_verification(registry, body.owner_id, body.category, LookupKey(query))
        if verification is None:
            return PlatformRecipient(query=query)
        return PlatformRecipient(
            query=query,
            platform_account_id=verification.platform_account_id,
            display_name=verification.resolved_name,
        )

    if isinstance(body.recipient, BankRecipientIn):
        account_number = body.recipient.account_number.strip()
        bank_code = body.recipient.bank_code.strip()
        key = LookupKey(account_number, bank_code or None)
        verification = _current_verification(registry, body.owner_id, body.category, key)
        return BankRecipient(
            bank_code=bank_code,
            account_number=account_number,
            account_name=(verification.resolved_name or "") if verification else "",
            bank_name=body.recipient.bank_name,
        )

    # Missing recipient: an empty one fails validation for its category
    if body.category == TransferCategory.PEER_TO_PEER:
        return PlatformRecipient(query="")
    return BankRecipient(bank_code="", account_number="")


def _review_response(gate: ConfirmationGate) -> ReviewResponse:
    summary = gate.summary()
    return ReviewResponse(
        request_id=summary.request_id,
        gate_state=gate.state.value,
        category=summary.category,
        amount_minor=summary.amount_minor,
        fee_minor=summary.fee_minor,
        total_debit_minor=summary.total_debit_minor,
        recipient_name=summary.recipient_name,
        narration=summary.narration,
    )


def _load_gate(repo: TransferIntentRepository, request_id: str, owner_id: str) -> tuple[TransferIntent, ConfirmationGate]:
    intent = repo.get_intent(request_id, owner_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    if intent.consumed:
        raise HTTPException(status_code=409, detail="Transfer already processed")
    gate = ConfirmationGate(
        repo.to_frozen(intent),
        state=GateState(intent.gate_state),
        attempt=intent.attempt,
        key_attempt=intent.key_attempt,
    )
    return intent, gate


async def _sender_profile(gateway: TransferGateway, owner_id: str, request_id: str) -> SenderProfile:
    try:
        return await gateway.get_sender_profile(owner_id)
    except GatewayUnavailableError as e:
        logging.error(f"Wallet profile unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Wallet service unavailable")


@router.post("/transfers", response_model=ReviewResponse, status_code=201)
async def create_transfer(
    body: TransferCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransferGateway = Depends(get_gateway),
    fee_calculator: FeeCalculator = Depends(get_fee_calculator),
    registry: ResolverRegistry = Depends(get_resolver_registry),
):
    """
    Validate a transfer intent, quote fees, and freeze it for review.

    Flow:
    1. Load the sender's own account snapshot
    2. Build the request (self_account uses the configured payout account)
    3. Validate; no network call is made for money movement
    4. Quote fees once and persist the frozen request
    5. Return the summary the user confirms
    """
    request_id = get_request_id(request)
    sender = await _sender_profile(gateway, body.owner_id, request_id)

    transfer_request = TransferRequest(
        request_id=str(uuid.uuid4()),
        owner_id=body.owner_id,
        category=body.category,
        amount_minor=body.amount_minor,
        narration=body.narration.strip(),
        recipient=_build_recipient(body, sender, registry),
        save_recipient=body.save_recipient,
        save_as_default=body.save_recipient and body.save_as_default,
    )

    validation = TransferValidator().validate(transfer_request, sender)
    if not validation.ok:
        logging.info(
            f"Transfer validation failed: {validation.code.value}",
            extra={"request_id": request_id, "owner_id": body.owner_id},
        )
        raise HTTPException(
            status_code=422,
            detail={
                "code": validation.code.value,
                "issues": [
                    ValidationIssueSchema(code=issue.code.value, field=issue.field, message=issue.message).model_dump()
                    for issue in validation.issues
                ],
            },
        )

    frozen = freeze_transfer(transfer_request, fee_calculator, PaymentChannel(settings.default_payment_channel))
    gate = ConfirmationGate.open(frozen, validation)

    try:
        TransferIntentRepository(db).create_intent(frozen)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Could not persist transfer intent: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return _review_response(gate)


@router.post("/transfers/{transfer_id}/confirm", response_model=ReviewResponse)
def confirm_transfer(transfer_id: str, body: OwnerRequest, db: Session = Depends(get_db)):
    """User accepted the reviewed summary; next step is the PIN"""
    repo = TransferIntentRepository(db)
    intent, gate = _load_gate(repo, transfer_id, body.owner_id)
    try:
        gate.confirm_review()
    except ConfirmationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    repo.update_gate(intent, gate.state.value, gate.attempt, key_attempt=gate.key_attempt)
    db.commit()
    return _review_response(gate)


@router.post("/transfers/{transfer_id}/cancel", response_model=CancelResponse)
def cancel_transfer(transfer_id: str, body: OwnerRequest, db: Session = Depends(get_db)):
    """Discard the transfer; there is no resume after cancelling"""
    repo = TransferIntentRepository(db)
    intent, gate = _load_gate(repo, transfer_id, body.owner_id)
    try:
        gate.cancel()
    except ConfirmationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    repo.delete_intent(intent)
    db.commit()
    return CancelResponse(request_id=transfer_id, gate_state=gate.state.value)


@router.post("/transfers/{transfer_id}/submit", response_model=OutcomeResponse)
async def submit_transfer(
    transfer_id: str,
    body: SubmitRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: TransferGateway = Depends(get_gateway),
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
):
    """
    Attach the PIN and run the transfer to a terminal outcome.

    Flow:
    1. Authorize through the confirmation gate (deterministic idempotency key per attempt)
    2. Commit the attempt before any money moves
    3. Orchestrate: withhold → route → refund on failure
    4. Persist the outcome; queue refund-pending outcomes for reconciliation.
       If that write fails, a second transaction flags the intent and still
       queues any refund owed
    5. Only then, save the recipient if the user opted in (best effort)
    """
    start_time = time.time()
    request_id = get_request_id(request)
    repo = TransferIntentRepository(db)
    intent, gate = _load_gate(repo, transfer_id, body.owner_id)

    try:
        authorized = gate.supply_secret(body.pin)
    except InvalidSecretFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConfirmationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    sender = await _sender_profile(gateway, body.owner_id, request_id)

    repo.update_gate(intent, gate.state.value, gate.attempt, key_attempt=gate.key_attempt)
    db.commit()

    try:
        outcome = await orchestrator.submit(authorized, sender)
    except Exception as e:
        logging.error(f"Unexpected error during transfer: {e}", extra={"request_id": request_id})
        _flag_for_reconciliation(db, transfer_id, body.owner_id, "orchestration_error", request_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    warning = None
    try:
        pending_refund = _persist_outcome(db, repo, intent, gate, authorized, outcome)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(
            f"Could not persist transfer outcome: {e}",
            extra={"request_id": request_id, "outcome": outcome.state.value, "gateway_reference": outcome.gateway_reference},
        )
        pending_refund = _flag_for_reconciliation(
            db,
            transfer_id,
            body.owner_id,
            f"outcome_not_recorded:{outcome.state.value}",
            request_id,
            authorized=authorized,
            outcome=outcome,
        )
        warning = "Transfer outcome could not be recorded; it has been flagged for reconciliation"

    duration_ms = (time.time() - start_time) * 1000
    category = authorized.transfer.request.category.value
    record_outcome(outcome.state.value, category)
    log_transfer_outcome(request_id, body.owner_id, category, outcome, duration_ms)
    if pending_refund is not None:
        log_refund_pending(request_id, pending_refund)

    recipient_saved = None
    if outcome.succeeded and authorized.transfer.request.save_recipient and warning is None:
        recipient_saved, warning = _save_recipient(db, authorized.transfer.request, request_id)

    return _outcome_response(outcome, recipient_saved, warning)


def _persist_outcome(
    db: Session,
    repo: TransferIntentRepository,
    intent: TransferIntent,
    gate: ConfirmationGate,
    authorized: AuthorizedTransfer,
    outcome: TransferOutcome,
) -> Optional[PendingRefund]:
    """Record the attempt and move the gate on; flush only, the caller commits"""
    OutcomeRepository(db).record_outcome(outcome)

    if outcome.state == OutcomeState.DEBIT_UNCONFIRMED:
        # The debit may have landed: the next PIN entry retries under the same key
        gate.reopen_for_secret(keep_key=True)
        repo.update_gate(intent, gate.state.value, gate.attempt, key_attempt=gate.key_attempt)
        repo.flag_for_reconciliation(intent, FailureKind.WITHHOLD_UNCONFIRMED.value)
        flagged_transfer_counter.labels(reason=FailureKind.WITHHOLD_UNCONFIRMED.value).inc()
        return None

    if intent.needs_reconciliation and outcome.failure_kind != FailureKind.VALIDATION:
        # A retry under the kept key settled what the earlier attempt left open
        repo.clear_reconciliation_flag(intent)

    if outcome.state == OutcomeState.FAILED_NO_DEBIT and outcome.failure_kind == FailureKind.AUTHORIZATION:
        # Declined outright; the user may re-enter the PIN under a new key
        gate.reopen_for_secret()
        repo.update_gate(intent, gate.state.value, gate.attempt, key_attempt=gate.key_attempt)
    else:
        repo.update_gate(intent, gate.state.value, gate.attempt, key_attempt=gate.key_attempt, consumed=True)

    if outcome.state == OutcomeState.FAILED_REFUND_PENDING:
        return PendingRefundRepository(db).enqueue(
            outcome,
            owner_id=authorized.transfer.request.owner_id,
            amount_minor=authorized.transfer.total_debit_minor,
            idempotency_key=authorized.refund_key,
        )
    return None


def _flag_for_reconciliation(
    db: Session,
    transfer_id: str,
    owner_id: str,
    reason: str,
    request_id: str,
    authorized: Optional[AuthorizedTransfer] = None,
    outcome: Optional[TransferOutcome] = None,
) -> Optional[PendingRefund]:
    """
    Second transaction after the normal write path failed.

    Consumes and flags the intent so it cannot be resubmitted, and queues the
    refund for a refund-pending outcome so reconciliation still owes it.
    """
    try:
        repo = TransferIntentRepository(db)
        intent = repo.get_intent(transfer_id, owner_id)
        if intent is not None:
            repo.flag_for_reconciliation(intent, reason, consumed=True)

        pending_refund = None
        if outcome is not None and outcome.state == OutcomeState.FAILED_REFUND_PENDING:
            pending_refund = PendingRefundRepository(db).enqueue(
                outcome,
                owner_id=owner_id,
                amount_minor=authorized.transfer.total_debit_minor,
                idempotency_key=authorized.refund_key,
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(
            f"Could not flag transfer for reconciliation: {e}",
            extra={
                "request_id": request_id,
                "transfer_request_id": transfer_id,
                "owner_id": owner_id,
                "reason": reason,
                "outcome": outcome.state.value if outcome else None,
                "gateway_reference": outcome.gateway_reference if outcome else None,
            },
        )
        raise HTTPException(status_code=500, detail="Internal server error")

    flagged_transfer_counter.labels(reason=reason.split(":")[0]).inc()
    return pending_refund


def _save_recipient(db: Session, transfer_request: TransferRequest, request_id: str) -> tuple[bool, str | None]:
    """Opt-in save after success; failures become a warning, never a transfer error"""
    try:
        SavedRecipientRepository(db).save(
            transfer_request.owner_id,
            transfer_request.category,
            transfer_request.recipient,
            is_default=transfer_request.save_as_default,
        )
        db.commit()
        return True, None
    except DuplicateRecipientError:
        return False, "Recipient is already saved"
    except (SQLAlchemyError, DomainException) as e:
        db.rollback()
        recipient_save_failures_counter.inc()
        logging.warning(f"Could not save recipient: {e}", extra={"request_id": request_id})
        return False, "Transfer succeeded but the recipient could not be saved"


def _outcome_response(outcome: TransferOutcome, recipient_saved=None, warning=None) -> OutcomeResponse:
    return OutcomeResponse(
        request_id=outcome.request_id,
        attempt=outcome.attempt,
        state=outcome.state.value,
        gateway_reference=outcome.gateway_reference,
        refund_reference=outcome.refund_reference,
        failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
        failure_reason=outcome.failure_reason,
        transitions=[state.value for state in outcome.transitions],
        recipient_saved=recipient_saved,
        warning=warning,
    )


@router.get("/transfers/{transfer_id}/outcome", response_model=OutcomeResponse)
def get_transfer_outcome(transfer_id: str, db: Session = Depends(get_db)):
    """Latest attempt's outcome, for rendering success/error state"""
    outcome = OutcomeRepository(db).get_latest(transfer_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Outcome not found")
    return _outcome_response(outcome)


def _receipt_response(receipt: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        receipt_number=receipt.receipt_number,
        request_id=receipt.request_id,
        recipient_name=receipt.recipient_name,
        amount_minor=receipt.amount_minor,
        fee_minor=receipt.fee_minor,
        gateway_reference=receipt.gateway_reference,
        charge_reference=receipt.charge_reference,
        created_at=receipt.created_at,
    )


@router.post("/transfers/{transfer_id}/receipt", response_model=ReceiptResponse, status_code=201)
async def purchase_receipt(
    transfer_id: str,
    body: SubmitRequest,
    request: Request,
    response: Response,
    idempotency_key: str = Header(..., alias="Idempotency-Key", min_length=1),
    db: Session = Depends(get_db),
    gateway: TransferGateway = Depends(get_gateway),
):
    """
    Charge the receipt fee and issue a receipt for a settled transfer.

    The fee is withheld first and refunded if the receipt cannot be stored.
    A transfer that already has a receipt gets it back without a charge.
    Clients retry an unanswered purchase with the same Idempotency-Key.
    """
    request_id = get_request_id(request)
    intents = TransferIntentRepository(db)
    intent = intents.get_intent(transfer_id, body.owner_id)
    outcome = OutcomeRepository(db).get_latest(transfer_id)
    if intent is None or outcome is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    if not outcome.succeeded:
        raise HTTPException(status_code=409, detail="Receipts are only issued for settled transfers")

    receipts = ReceiptRepository(db)
    existing = receipts.get_for_transfer(transfer_id, body.owner_id)
    if existing is not None:
        response.status_code = 200
        return _receipt_response(existing)

    if len(body.pin) != settings.pin_length or not body.pin.isdigit():
        raise HTTPException(status_code=422, detail=f"PIN must be {settings.pin_length} digits")

    transfer = intents.to_frozen(intent)
    fee_minor = settings.receipt_fee_minor
    charge_key = f"{transfer_id}:receipt:{idempotency_key}"
    issued = []

    async def issue_receipt(reference: str) -> str:
        try:
            receipt = receipts.create(transfer, outcome, fee_minor, reference)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        issued.append(receipt)
        return receipt.receipt_number

    result = await charge_for_service(gateway, body.owner_id, fee_minor, body.pin, charge_key, issue_receipt)
    service_charge_counter.labels(service="receipt", result=result.state.value).inc()

    if result.state == CompensationState.COMMITTED:
        logging.info(
            "Receipt issued",
            extra={"request_id": request_id, "transfer_request_id": transfer_id, "charge_reference": result.reference},
        )
        return _receipt_response(issued[0])

    if result.state == CompensationState.NOT_WITHHELD:
        if isinstance(result.error, (InvalidSecretError, InsufficientFundsError)):
            raise HTTPException(status_code=422, detail=result.failure_reason)
        raise HTTPException(status_code=503, detail="Wallet service unavailable")

    logging.error(
        f"Receipt generation failed after the fee was withheld: {result.failure_reason}",
        extra={"request_id": request_id, "transfer_request_id": transfer_id, "charge_reference": result.reference},
    )
    if result.state == CompensationState.COMPENSATED:
        raise HTTPException(status_code=503, detail="Receipt could not be generated; the fee was refunded")

    pending_refund = PendingRefundRepository(db).enqueue_refund(
        transfer_id,
        owner_id=body.owner_id,
        reference=result.reference,
        amount_minor=fee_minor,
        idempotency_key=f"{charge_key}:refund",
    )
    db.commit()
    log_refund_pending(request_id, pending_refund)
    raise HTTPException(status_code=503, detail="Receipt could not be generated; the fee refund is pending")
