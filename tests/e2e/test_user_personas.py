"""
E2E tests for 5 sender personas walking through the whole transfer journey.

Each persona gets its own wallet snapshot on the in-memory gateway, then
goes resolve → create → confirm → submit over HTTP.

User personas:
- user_steady: Funded wallet, verified recipient, transfer settles
- user_broke: Balance below amount plus fee, nothing is debited
- user_forgetful: Wrong PIN first, succeeds on the retry
- user_unlucky: Recipient bank rejects the credit, debit is refunded
- user_newbie: No payout account configured, self transfer refused
"""

import pytest
from dataclasses import replace
from fastapi.testclient import TestClient
from wallet_transfer.domain.exceptions import RecipientRejectedError


@pytest.fixture
def persona(gateway, sender):
    """Register a sender persona on the fake wallet"""

    def register(owner_id: str, balance: int, pin: str = "1234", **profile_overrides):
        gateway.profiles[owner_id] = replace(sender, owner_id=owner_id, **profile_overrides)
        gateway.balances[owner_id] = balance
        gateway.pins[owner_id] = pin
        return owner_id

    return register


def external_transfer(client: TestClient, owner_id: str, amount_minor: int):
    client.get(
        "/v1/recipients/resolve",
        params={
            "owner_id": owner_id,
            "category": "external_bank",
            "account_number": "0987654321",
            "bank_code": "044",
        },
    )
    return client.post(
        "/v1/transfers",
        json={
            "owner_id": owner_id,
            "category": "external_bank",
            "amount_minor": amount_minor,
            "narration": "Rent share",
            "recipient": {"type": "bank", "bank_code": "044", "account_number": "0987654321"},
        },
    )


def confirm_and_submit(client: TestClient, owner_id: str, request_id: str, pin: str = "1234"):
    client.post(f"/v1/transfers/{request_id}/confirm", json={"owner_id": owner_id})
    return client.post(f"/v1/transfers/{request_id}/submit", json={"owner_id": owner_id, "pin": pin})


@pytest.mark.integration
def test_user_steady_transfer_settles(client: TestClient, persona, gateway):
    """
    user_steady: Funded wallet
    Expected: Settled, debited exactly amount plus fee
    """
    owner_id = persona("user_steady", balance=500_000)

    review = external_transfer(client, owner_id, 5000).json()
    assert review["total_debit_minor"] == 7025, "Total should be frozen at review"

    data = confirm_and_submit(client, owner_id, review["request_id"]).json()

    assert data["state"] == "succeeded"
    assert gateway.balances[owner_id] == 500_000 - 7025


@pytest.mark.integration
def test_user_broke_never_debited(client: TestClient, persona, gateway):
    """
    user_broke: Balance covers the amount but not the fee
    Expected: Failed without debit, no routing attempted
    """
    owner_id = persona("user_broke", balance=6000)

    review = external_transfer(client, owner_id, 5000).json()
    data = confirm_and_submit(client, owner_id, review["request_id"]).json()

    assert data["state"] == "failed_no_debit"
    assert gateway.balances[owner_id] == 6000
    assert gateway.route_calls == []


@pytest.mark.integration
def test_user_forgetful_retries_pin(client: TestClient, persona, gateway):
    """
    user_forgetful: Mistypes the PIN once
    Expected: First attempt declined, second attempt on the same review settles
    """
    owner_id = persona("user_forgetful", balance=100_000, pin="4321")

    review = external_transfer(client, owner_id, 5000).json()
    first = confirm_and_submit(client, owner_id, review["request_id"], pin="1234").json()
    second = client.post(
        f"/v1/transfers/{review['request_id']}/submit",
        json={"owner_id": owner_id, "pin": "4321"},
    ).json()

    assert first["state"] == "failed_no_debit"
    assert second["state"] == "succeeded"
    assert second["attempt"] == 2
    assert gateway.balances[owner_id] == 100_000 - 7025


@pytest.mark.integration
def test_user_unlucky_refunded(client: TestClient, persona, gateway):
    """
    user_unlucky: Recipient's bank rejects the credit after the debit
    Expected: Refunded in full, exactly once
    """
    owner_id = persona("user_unlucky", balance=100_000)
    gateway.route_error = RecipientRejectedError("Beneficiary account closed")

    review = external_transfer(client, owner_id, 5000).json()
    data = confirm_and_submit(client, owner_id, review["request_id"]).json()

    assert data["state"] == "failed_and_refunded"
    assert data["failure_reason"] == "Beneficiary account closed"
    assert gateway.balances[owner_id] == 100_000
    assert len(gateway.refund_calls) == 1


@pytest.mark.integration
def test_user_newbie_incomplete_profile(client: TestClient, persona, gateway):
    """
    user_newbie: Has not set up a payout account
    Expected: Self transfer refused before any money moves
    """
    owner_id = persona("user_newbie", balance=100_000, payout_account=None)

    response = client.post(
        "/v1/transfers",
        json={"owner_id": owner_id, "category": "self_account", "amount_minor": 5000, "narration": "Savings"},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "incomplete_profile"
    assert gateway.withhold_calls == []
