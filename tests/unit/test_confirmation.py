"""Unit tests for the confirmation gate"""

import pytest
from dataclasses import replace
from wallet_transfer.domain.confirmation import ConfirmationGate, GateState, freeze_transfer
from wallet_transfer.domain.exceptions import ConfirmationStateError, InvalidSecretFormatError
from wallet_transfer.domain.fees import FeeCalculator
from wallet_transfer.domain.validation import TransferValidator


@pytest.fixture
def gate(frozen_external) -> ConfirmationGate:
    return ConfirmationGate(frozen_external)


def test_freeze_transfer_quotes_once(external_request):
    frozen = freeze_transfer(external_request, FeeCalculator())

    assert frozen.quote.fee_minor == 2025
    assert frozen.total_debit_minor == 7025
    assert frozen.totals_consistent()


def test_summary_shows_frozen_totals(gate):
    summary = gate.summary()

    assert summary.amount_minor == 5000
    assert summary.fee_minor == 2025
    assert summary.total_debit_minor == 7025
    assert summary.recipient_name == "Jane Doe"
    assert summary.narration == "Rent share"


def test_happy_path_yields_authorized_transfer(gate):
    gate.confirm_review()
    authorized = gate.supply_secret("1234")

    assert gate.state == GateState.AUTHORIZED
    assert authorized.attempt == 1
    assert authorized.secret == "1234"
    assert authorized.transfer.total_debit_minor == 7025
    assert authorized.idempotency_key == f"{gate.transfer.request_id}:1"
    assert authorized.withhold_key == f"{gate.transfer.request_id}:1:withhold"


def test_secret_is_not_in_repr(gate):
    gate.confirm_review()

    assert "1234" not in repr(gate.supply_secret("1234"))


def test_secret_before_review_rejected(gate):
    with pytest.raises(ConfirmationStateError):
        gate.supply_secret("1234")


@pytest.mark.parametrize("secret", ["", "123", "12345", "12a4"])
def test_malformed_secret_rejected(gate, secret):
    gate.confirm_review()

    with pytest.raises(InvalidSecretFormatError):
        gate.supply_secret(secret)
    assert gate.state == GateState.AWAITING_SECRET
    assert gate.attempt == 0


def test_reopen_issues_new_attempt_and_key(gate):
    gate.confirm_review()
    first = gate.supply_secret("1111")
    gate.reopen_for_secret()
    second = gate.supply_secret("1234")

    assert second.attempt == 2
    assert second.idempotency_key != first.idempotency_key
    assert second.transfer == first.transfer


def test_reopen_keeping_key_reuses_previous_attempt_key(gate):
    gate.confirm_review()
    first = gate.supply_secret("1234")
    gate.reopen_for_secret(keep_key=True)
    second = gate.supply_secret("1234")

    assert second.attempt == 2
    assert second.idempotency_key == first.idempotency_key


def test_key_is_fresh_again_after_definite_decline(gate):
    gate.confirm_review()
    first = gate.supply_secret("1234")
    gate.reopen_for_secret(keep_key=True)
    second = gate.supply_secret("9999")
    gate.reopen_for_secret()
    third = gate.supply_secret("1234")

    assert second.idempotency_key == first.idempotency_key
    assert third.idempotency_key == f"{gate.transfer.request_id}:3"


def test_cannot_cancel_while_debit_unconfirmed(gate):
    gate.confirm_review()
    gate.supply_secret("1234")
    gate.reopen_for_secret(keep_key=True)

    with pytest.raises(ConfirmationStateError):
        gate.cancel()


def test_cannot_confirm_twice(gate):
    gate.confirm_review()

    with pytest.raises(ConfirmationStateError):
        gate.confirm_review()


def test_cancel_before_authorization(gate):
    gate.confirm_review()
    gate.cancel()

    assert gate.state == GateState.CANCELLED
    with pytest.raises(ConfirmationStateError):
        gate.supply_secret("1234")


def test_cannot_cancel_after_authorization(gate):
    gate.confirm_review()
    gate.supply_secret("1234")

    with pytest.raises(ConfirmationStateError):
        gate.cancel()


def test_open_refuses_invalid_request(frozen_external, sender):
    bad = replace(frozen_external, request=replace(frozen_external.request, amount_minor=50))
    validation = TransferValidator().validate(bad.request, sender)

    with pytest.raises(ConfirmationStateError):
        ConfirmationGate.open(bad, validation)


def test_open_valid_request(frozen_external, sender):
    validation = TransferValidator().validate(frozen_external.request, sender)

    assert ConfirmationGate.open(frozen_external, validation).state == GateState.AWAITING_REVIEW
