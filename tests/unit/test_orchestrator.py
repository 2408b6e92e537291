"""Unit tests for transfer orchestration"""

import pytest
from dataclasses import replace
from wallet_transfer.domain.confirmation import ConfirmationGate
from wallet_transfer.domain.exceptions import (
    GatewayUnavailableError,
    RecipientRejectedError,
    RefundFailedError,
)
from wallet_transfer.domain.models import (
    BankDestination,
    FailureKind,
    FeeQuote,
    OutcomeState,
    PlatformDestination,
    TransferState,
)
from wallet_transfer.domain.orchestrator import TransferOrchestrator, build_destination

OWNER_ID = "user_1"
START_BALANCE = 1_000_000


def authorize(frozen, pin="1234"):
    gate = ConfirmationGate(frozen)
    gate.confirm_review()
    return gate.supply_secret(pin)


@pytest.fixture
def orchestrator(gateway) -> TransferOrchestrator:
    return TransferOrchestrator(gateway, timeout=1.0)


async def test_successful_external_transfer(orchestrator, gateway, frozen_external, sender):
    authorized = authorize(frozen_external)

    outcome = await orchestrator.submit(authorized, sender)

    assert outcome.state == OutcomeState.SUCCEEDED
    assert outcome.succeeded
    assert outcome.attempt == 1
    assert outcome.gateway_reference == "CONF_WD_1"
    assert outcome.transitions == (
        TransferState.VALIDATED,
        TransferState.AUTHORIZED,
        TransferState.FUNDS_WITHHELD,
        TransferState.ROUTED,
        TransferState.SETTLED,
    )
    assert gateway.balances[OWNER_ID] == START_BALANCE - 7025
    assert gateway.refund_calls == []


async def test_withhold_uses_frozen_total_and_attempt_key(orchestrator, gateway, frozen_external, sender):
    authorized = authorize(frozen_external)

    await orchestrator.submit(authorized, sender)

    assert gateway.withhold_calls == [(OWNER_ID, 7025, authorized.withhold_key)]


async def test_destination_carries_verified_recipient(orchestrator, gateway, frozen_external, sender):
    await orchestrator.submit(authorize(frozen_external), sender)

    _, destination = gateway.route_calls[0]
    assert destination == BankDestination(
        bank_code="044",
        account_number="0987654321",
        account_name="Jane Doe",
        narration="Rent share",
        amount_minor=5000,
    )


async def test_wrong_pin_fails_without_debit(orchestrator, gateway, frozen_external, sender):
    outcome = await orchestrator.submit(authorize(frozen_external, pin="9999"), sender)

    assert outcome.state == OutcomeState.FAILED_NO_DEBIT
    assert outcome.failure_kind == FailureKind.AUTHORIZATION
    assert gateway.route_calls == []
    assert gateway.refund_calls == []
    assert gateway.balances[OWNER_ID] == START_BALANCE


async def test_insufficient_funds_fails_without_debit(orchestrator, gateway, frozen_external, sender):
    gateway.balances[OWNER_ID] = 7000

    outcome = await orchestrator.submit(authorize(frozen_external), sender)

    assert outcome.state == OutcomeState.FAILED_NO_DEBIT
    assert "Insufficient" in outcome.failure_reason
    assert gateway.route_calls == []


async def test_routing_failure_refunds_exactly_once(orchestrator, gateway, frozen_external, sender):
    """Jane Doe's bank rejects the credit: the 7025 debit comes back"""
    gateway.route_error = RecipientRejectedError("Beneficiary account closed")
    authorized = authorize(frozen_external)

    outcome = await orchestrator.submit(authorized, sender)

    assert outcome.state == OutcomeState.FAILED_AND_REFUNDED
    assert outcome.failure_kind == FailureKind.ROUTING
    assert outcome.failure_reason == "Beneficiary account closed"
    assert outcome.refund_reference == "RF_WD_1"
    assert gateway.refund_calls == [("WD_1", authorized.refund_key)]
    assert gateway.balances[OWNER_ID] == START_BALANCE
    assert outcome.transitions == (
        TransferState.VALIDATED,
        TransferState.AUTHORIZED,
        TransferState.FUNDS_WITHHELD,
        TransferState.REFUND_ISSUED,
        TransferState.FAILED,
    )


async def test_routing_timeout_refunds(gateway, frozen_external, sender):
    gateway.route_delay = 0.5
    orchestrator = TransferOrchestrator(gateway, timeout=0.05)

    outcome = await orchestrator.submit(authorize(frozen_external), sender)

    assert outcome.state == OutcomeState.FAILED_AND_REFUNDED
    assert len(gateway.refund_calls) == 1
    assert gateway.balances[OWNER_ID] == START_BALANCE


async def test_failed_refund_is_refund_pending(orchestrator, gateway, frozen_external, sender):
    gateway.route_error = GatewayUnavailableError("bank rail 503")
    gateway.refund_error = RefundFailedError("wallet 503")

    outcome = await orchestrator.submit(authorize(frozen_external), sender)

    assert outcome.state == OutcomeState.FAILED_REFUND_PENDING
    assert outcome.gateway_reference == "WD_1"
    assert outcome.refund_reference is None
    assert len(gateway.refund_calls) == 1
    assert gateway.balances[OWNER_ID] == START_BALANCE - 7025


async def test_revalidation_failure_never_touches_gateway(orchestrator, gateway, frozen_external, sender):
    bad = replace(frozen_external, request=replace(frozen_external.request, narration=""))

    outcome = await orchestrator.submit(authorize(bad), sender)

    assert outcome.state == OutcomeState.FAILED_NO_DEBIT
    assert outcome.failure_kind == FailureKind.VALIDATION
    assert gateway.withhold_calls == []


async def test_inconsistent_totals_rejected(orchestrator, gateway, frozen_external, sender):
    tampered = replace(frozen_external, quote=FeeQuote(fee_minor=2025, total_debit_minor=5000))

    outcome = await orchestrator.submit(authorize(tampered), sender)

    assert outcome.state == OutcomeState.FAILED_NO_DEBIT
    assert outcome.failure_kind == FailureKind.VALIDATION
    assert gateway.withhold_calls == []


async def test_retry_after_wrong_pin_uses_new_key(orchestrator, gateway, frozen_external, sender):
    gate = ConfirmationGate(frozen_external)
    gate.confirm_review()
    first = await orchestrator.submit(gate.supply_secret("9999"), sender)
    gate.reopen_for_secret()
    second = await orchestrator.submit(gate.supply_secret("1234"), sender)

    assert first.state == OutcomeState.FAILED_NO_DEBIT
    assert second.state == OutcomeState.SUCCEEDED
    assert second.attempt == 2
    assert gateway.withhold_calls[0][2] != gateway.withhold_calls[1][2]
    assert gateway.balances[OWNER_ID] == START_BALANCE - 7025


async def test_lost_withhold_reply_is_unconfirmed_not_declined(orchestrator, gateway, frozen_external, sender):
    gateway.withhold_reply_error = GatewayUnavailableError("Wallet timeout after 5.0s")

    outcome = await orchestrator.submit(authorize(frozen_external), sender)

    assert outcome.state == OutcomeState.DEBIT_UNCONFIRMED
    assert outcome.failure_kind == FailureKind.WITHHOLD_UNCONFIRMED
    assert gateway.route_calls == []
    assert gateway.refund_calls == []


async def test_retry_after_unconfirmed_withhold_debits_once(orchestrator, gateway, frozen_external, sender):
    """The debit landed but the reply was lost: the retry reuses the key and the wallet dedupes"""
    gateway.withhold_reply_error = GatewayUnavailableError("Wallet timeout after 5.0s")
    gate = ConfirmationGate(frozen_external)
    gate.confirm_review()
    first = await orchestrator.submit(gate.supply_secret("1234"), sender)
    gate.reopen_for_secret(keep_key=True)
    second = await orchestrator.submit(gate.supply_secret("1234"), sender)

    assert first.state == OutcomeState.DEBIT_UNCONFIRMED
    assert second.state == OutcomeState.SUCCEEDED
    assert gateway.withhold_calls[0][2] == gateway.withhold_calls[1][2]
    assert gateway.balances[OWNER_ID] == START_BALANCE - 7025


def test_peer_destination_uses_platform_ledger(peer_request):
    destination = build_destination(peer_request)

    assert destination == PlatformDestination(
        platform_account_id="wallet_user_2",
        narration="Lunch",
        amount_minor=20_000,
    )
