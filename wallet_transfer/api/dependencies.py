"""Dependency injection for FastAPI endpoints"""

import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple
from fastapi import Depends, Request
from wallet_transfer.config import settings
from wallet_transfer.domain.fees import FeeCalculator
from wallet_transfer.domain.orchestrator import TransferOrchestrator
from wallet_transfer.domain.ports import RecipientLookup, TransferGateway
from wallet_transfer.domain.resolver import AccountResolver
from wallet_transfer.infrastructure.clients.lookup import LookupClient
from wallet_transfer.infrastructure.clients.wallet import WalletGatewayClient


class ResolverRegistry:
    """
    One AccountResolver per sender, so newer input supersedes older lookups.

    Bounded: least recently used senders are dropped past max_size, and any
    sender idle for longer than idle_seconds starts over with a fresh resolver.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size or settings.resolver_registry_max_size
        self.idle_seconds = idle_seconds if idle_seconds is not None else settings.resolver_idle_seconds
        self.clock = clock
        self._resolvers: "OrderedDict[str, Tuple[AccountResolver, float]]" = OrderedDict()

    async def get(self, owner_id: str, gateway: TransferGateway, lookup: RecipientLookup) -> AccountResolver:
        """Resolver for owner_id, with the sender profile refreshed on every call"""
        sender = await gateway.get_sender_profile(owner_id)
        self._evict_idle()

        entry = self._resolvers.get(owner_id)
        if entry is None:
            resolver = AccountResolver(lookup, sender)
        else:
            resolver = entry[0]
            resolver.sender = sender
            resolver.lookup = lookup

        self._resolvers[owner_id] = (resolver, self.clock())
        self._resolvers.move_to_end(owner_id)
        while len(self._resolvers) > self.max_size:
            self._resolvers.popitem(last=False)
        return resolver

    def peek(self, owner_id: str) -> Optional[AccountResolver]:
        self._evict_idle()
        entry = self._resolvers.get(owner_id)
        return entry[0] if entry else None

    def clear(self) -> None:
        self._resolvers.clear()

    def __len__(self) -> int:
        return len(self._resolvers)

    def _evict_idle(self) -> None:
        cutoff = self.clock() - self.idle_seconds
        # Entries are kept in last-use order, so stale ones are at the front
        while self._resolvers:
            owner_id, (_, last_used) = next(iter(self._resolvers.items()))
            if last_used >= cutoff:
                break
            del self._resolvers[owner_id]


resolver_registry = ResolverRegistry()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_gateway() -> TransferGateway:
    """Provide wallet / bank-rail gateway client instance"""
    return WalletGatewayClient()


def get_lookup_client() -> RecipientLookup:
    """Provide recipient lookup client instance"""
    return LookupClient()


def get_fee_calculator() -> FeeCalculator:
    return FeeCalculator()


def get_resolver_registry() -> ResolverRegistry:
    return resolver_registry


def get_orchestrator(gateway: TransferGateway = Depends(get_gateway)) -> TransferOrchestrator:
    return TransferOrchestrator(gateway)
