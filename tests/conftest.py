"""Pytest fixtures for testing"""

import asyncio
import itertools
import pytest
from typing import Dict, Generator, List, Optional, Tuple
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from wallet_transfer.api.dependencies import get_gateway, get_lookup_client, resolver_registry
from wallet_transfer.api.main import create_app
from wallet_transfer.config import settings
from wallet_transfer.domain.exceptions import (
    InsufficientFundsError,
    InvalidSecretError,
    LookupNotFoundError,
)
from wallet_transfer.domain.models import (
    BankAccount,
    BankRecipient,
    FeeQuote,
    FrozenTransfer,
    PlatformRecipient,
    SenderProfile,
    TransferCategory,
    TransferRequest,
)
from wallet_transfer.infrastructure.database.models import Base
from wallet_transfer.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OWNER_ID = "user_1"
CORRECT_PIN = "1234"


class FakeWalletGateway:
    """In-memory wallet: balances, PIN check, idempotent withhold and refund"""

    def __init__(self, balances: Dict[str, int], pins: Dict[str, str], profiles: Dict[str, SenderProfile]):
        self.balances = dict(balances)
        self.pins = dict(pins)
        self.profiles = dict(profiles)
        self.withhold_calls: List[Tuple[str, int, str]] = []
        self.route_calls: List[Tuple[str, object]] = []
        self.refund_calls: List[Tuple[str, str]] = []
        self.route_error: Optional[Exception] = None
        self.route_delay: float = 0.0
        self.refund_error: Optional[Exception] = None
        # Raised once after the debit is applied, as when the reply is lost
        self.withhold_reply_error: Optional[Exception] = None
        self._held: Dict[str, Tuple[str, int]] = {}
        self._withhold_keys: Dict[str, str] = {}
        self._refund_keys: Dict[str, str] = {}
        self._ids = itertools.count(1)

    async def withhold(self, owner_id: str, amount_minor: int, secret: str, idempotency_key: str) -> str:
        self.withhold_calls.append((owner_id, amount_minor, idempotency_key))
        if idempotency_key in self._withhold_keys:
            return self._withhold_keys[idempotency_key]
        if self.pins.get(owner_id) != secret:
            raise InvalidSecretError("Invalid transaction PIN")
        if self.balances.get(owner_id, 0) < amount_minor:
            raise InsufficientFundsError("Insufficient wallet balance (including fees)")

        self.balances[owner_id] -= amount_minor
        reference = f"WD_{next(self._ids)}"
        self._held[reference] = (owner_id, amount_minor)
        self._withhold_keys[idempotency_key] = reference
        if self.withhold_reply_error is not None:
            error, self.withhold_reply_error = self.withhold_reply_error, None
            raise error
        return reference

    async def route(self, reference: str, destination) -> str:
        self.route_calls.append((reference, destination))
        if self.route_delay:
            await asyncio.sleep(self.route_delay)
        if self.route_error is not None:
            raise self.route_error
        return f"CONF_{reference}"

    async def refund(self, reference: str, idempotency_key: str) -> str:
        self.refund_calls.append((reference, idempotency_key))
        if self.refund_error is not None:
            raise self.refund_error
        if idempotency_key in self._refund_keys:
            return self._refund_keys[idempotency_key]

        owner_id, amount_minor = self._held.pop(reference)
        self.balances[owner_id] += amount_minor
        confirmation = f"RF_{reference}"
        self._refund_keys[idempotency_key] = confirmation
        return confirmation

    async def get_sender_profile(self, owner_id: str) -> SenderProfile:
        return self.profiles[owner_id]


class FakeLookup:
    """Lookup service with per-key answers and optional per-key latency"""

    def __init__(
        self,
        bank: Optional[Dict[Tuple[str, str], str]] = None,
        platform: Optional[Dict[str, Tuple[str, str]]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.bank = bank or {}
        self.platform = platform or {}
        self.delays = delays or {}
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def lookup_bank_account(self, bank_code: str, account_number: str) -> str:
        self.calls.append(account_number)
        await asyncio.sleep(self.delays.get(account_number, 0))
        if self.error is not None:
            raise self.error
        try:
            return self.bank[(bank_code, account_number)]
        except KeyError:
            raise LookupNotFoundError("Account lookup failed")

    async def lookup_platform_account(self, query: str) -> Tuple[str, str]:
        self.calls.append(query)
        await asyncio.sleep(self.delays.get(query, 0))
        if self.error is not None:
            raise self.error
        try:
            return self.platform[query]
        except KeyError:
            raise LookupNotFoundError("User not found")


@pytest.fixture
def sender() -> SenderProfile:
    """Sender with a platform wallet and a configured payout account"""
    return SenderProfile(
        owner_id=OWNER_ID,
        platform_account_id="wallet_user_1",
        wallet_account_number="9900000001",
        wallet_bank_code="999",
        display_name="Ada Obi",
        payout_account=BankAccount(
            bank_code="058",
            account_number="0123456789",
            account_name="Ada Obi",
            bank_name="GTBank",
        ),
    )


@pytest.fixture
def gateway(sender: SenderProfile) -> FakeWalletGateway:
    return FakeWalletGateway(
        balances={OWNER_ID: 1_000_000},
        pins={OWNER_ID: CORRECT_PIN},
        profiles={OWNER_ID: sender},
    )


@pytest.fixture
def lookup() -> FakeLookup:
    return FakeLookup(
        bank={("044", "0987654321"): "Jane Doe"},
        platform={"9900000002": ("wallet_user_2", "Chidi Okeke")},
    )


@pytest.fixture
def external_request() -> TransferRequest:
    """Verified external bank transfer of 5000 minor units to Jane Doe"""
    return TransferRequest(
        request_id="7f1c5a52-9d0e-4d59-9e0f-3f7f5b0d9a11",
        owner_id=OWNER_ID,
        category=TransferCategory.EXTERNAL_BANK,
        amount_minor=5000,
        narration="Rent share",
        recipient=BankRecipient(bank_code="044", account_number="0987654321", account_name="Jane Doe"),
    )


@pytest.fixture
def peer_request() -> TransferRequest:
    return TransferRequest(
        request_id="1b8d0e0c-3a52-4b6f-8f2b-2b3c4d5e6f70",
        owner_id=OWNER_ID,
        category=TransferCategory.PEER_TO_PEER,
        amount_minor=20_000,
        narration="Lunch",
        recipient=PlatformRecipient(query="9900000002", platform_account_id="wallet_user_2", display_name="Chidi Okeke"),
    )


@pytest.fixture
def frozen_external(external_request: TransferRequest) -> FrozenTransfer:
    return FrozenTransfer(request=external_request, quote=FeeQuote(fee_minor=2025, total_debit_minor=7025))


@pytest.fixture(autouse=True)
def fast_lookups(monkeypatch):
    """No debounce waits unless a test asks for one"""
    monkeypatch.setattr(settings, "bank_lookup_debounce_seconds", 0.0)
    monkeypatch.setattr(settings, "platform_lookup_debounce_seconds", 0.0)
    resolver_registry.clear()
    yield
    resolver_registry.clear()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, gateway: FakeWalletGateway, lookup: FakeLookup) -> TestClient:
    """Create FastAPI test client with test database and in-memory collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_lookup_client] = lambda: lookup
    return TestClient(app)
