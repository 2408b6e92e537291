"""Debounced recipient verification with stale-result suppression"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from wallet_transfer.config import settings
from wallet_transfer.domain.exceptions import LookupNotFoundError, LookupTransientError
from wallet_transfer.domain.models import (
    LookupKey,
    RecipientVerification,
    SenderProfile,
    TransferCategory,
    VerificationStatus,
)
from wallet_transfer.domain.ports import RecipientLookup
from wallet_transfer.domain.validation import is_self_reference, is_well_formed_account_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingLookup:
    """Token for the latest input seen for a category"""

    key: LookupKey
    generation: int


class AccountResolver:
    """
    Resolve a typed recipient into a verified display name.

    One resolver per sender. Every call to resolve() supersedes earlier calls
    for the same category: results are tagged with the generation they were
    started under and only applied to current state if that generation is
    still the latest. Superseded results are returned to their caller but
    never become current().

    Flow per call:
    1. Register a new PendingLookup (generation += 1)
    2. Reject incomplete keys and self-references without a network call
    3. Serve exact-key cache hits
    4. Wait out the debounce window; bail out if superseded meanwhile
    5. Call the lookup service under a timeout and map failures to a status
    """

    def __init__(
        self,
        lookup: RecipientLookup,
        sender: SenderProfile,
        bank_debounce_seconds: Optional[float] = None,
        platform_debounce_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.lookup = lookup
        self.sender = sender
        self.bank_debounce_seconds = (
            bank_debounce_seconds if bank_debounce_seconds is not None else settings.bank_lookup_debounce_seconds
        )
        self.platform_debounce_seconds = (
            platform_debounce_seconds
            if platform_debounce_seconds is not None
            else settings.platform_lookup_debounce_seconds
        )
        self.timeout = timeout or settings.http_timeout_seconds

        self._generation = 0
        self._pending: Dict[TransferCategory, PendingLookup] = {}
        self._current: Dict[TransferCategory, RecipientVerification] = {}
        self._cache: Dict[Tuple[bool, LookupKey], RecipientVerification] = {}

    def current(self, category: TransferCategory) -> Optional[RecipientVerification]:
        """Verification applied for the latest input, if any"""
        return self._current.get(category)

    def is_current(self, category: TransferCategory, verification: RecipientVerification) -> bool:
        pending = self._pending.get(category)
        return (
            pending is not None
            and pending.generation == verification.generation
            and pending.key == verification.query_key
        )

    def invalidate(self, category: TransferCategory) -> None:
        """Input was edited: drop the applied result and outdate in-flight lookups"""
        self._generation += 1
        previous = self._pending.get(category)
        if previous is not None:
            self._pending[category] = PendingLookup(key=previous.key, generation=self._generation)
        self._current.pop(category, None)

    async def resolve(self, category: TransferCategory, key: LookupKey) -> RecipientVerification:
        token = self._begin(category, key)
        is_platform = category == TransferCategory.PEER_TO_PEER

        if not self._is_complete(is_platform, key):
            return self._apply(category, self._result(token, VerificationStatus.PENDING))

        if is_self_reference(self.sender, key.account_number, key.bank_code):
            return self._apply(
                category,
                self._result(token, VerificationStatus.SELF_REFERENTIAL, message="You cannot transfer to your own account"),
            )

        cached = self._cache.get((is_platform, key))
        if cached is not None and cached.platform_account_id is not None and (
            cached.platform_account_id == self.sender.platform_account_id
        ):
            return self._apply(
                category,
                self._result(token, VerificationStatus.SELF_REFERENTIAL, message="You cannot transfer to your own account"),
            )
        if cached is not None:
            return self._apply(
                category,
                RecipientVerification(
                    query_key=key,
                    status=cached.status,
                    resolved_name=cached.resolved_name,
                    platform_account_id=cached.platform_account_id,
                    generation=token.generation,
                ),
            )

        await asyncio.sleep(self.platform_debounce_seconds if is_platform else self.bank_debounce_seconds)
        if not self._token_is_latest(category, token):
            # Still typing; the newer call owns the lookup
            return self._result(token, VerificationStatus.PENDING, message="superseded")

        result = await self._lookup(token, is_platform)
        if result.status == VerificationStatus.VERIFIED:
            self._cache[(is_platform, key)] = result

        if not self._token_is_latest(category, token):
            logger.debug("Discarding stale lookup result", extra={"query_key": str(key)})
            return result
        return self._apply(category, result)

    async def _lookup(self, token: PendingLookup, is_platform: bool) -> RecipientVerification:
        key = token.key
        try:
            if is_platform:
                platform_id, name = await asyncio.wait_for(
                    self.lookup.lookup_platform_account(key.account_number),
                    timeout=self.timeout,
                )
                if platform_id == self.sender.platform_account_id:
                    return self._result(
                        token,
                        VerificationStatus.SELF_REFERENTIAL,
                        message="You cannot transfer to your own account",
                    )
                return self._result(token, VerificationStatus.VERIFIED, name=name, platform_account_id=platform_id)

            name = await asyncio.wait_for(
                self.lookup.lookup_bank_account(key.bank_code or "", key.account_number),
                timeout=self.timeout,
            )
            return self._result(token, VerificationStatus.VERIFIED, name=name)

        except LookupNotFoundError as e:
            return self._result(token, VerificationStatus.NOT_FOUND, message=str(e) or "Account not found")
        except LookupTransientError as e:
            logger.warning(f"Recipient lookup failed: {e}", extra={"query_key": str(key)})
            return self._result(token, VerificationStatus.ERROR, message="Could not verify account")
        except asyncio.TimeoutError:
            logger.warning(f"Recipient lookup timed out after {self.timeout}s", extra={"query_key": str(key)})
            return self._result(token, VerificationStatus.ERROR, message="Could not verify account")

    def _begin(self, category: TransferCategory, key: LookupKey) -> PendingLookup:
        self._generation += 1
        token = PendingLookup(key=key, generation=self._generation)
        self._pending[category] = token
        return token

    def _token_is_latest(self, category: TransferCategory, token: PendingLookup) -> bool:
        return self._pending.get(category) == token

    def _apply(self, category: TransferCategory, result: RecipientVerification) -> RecipientVerification:
        pending = self._pending.get(category)
        if pending is not None and pending.generation == result.generation:
            self._current[category] = result
        return result

    def _is_complete(self, is_platform: bool, key: LookupKey) -> bool:
        if is_platform:
            return len(key.account_number.strip()) >= settings.platform_query_min_length
        return bool(key.bank_code) and is_well_formed_account_number(key.account_number)

    @staticmethod
    def _result(
        token: PendingLookup,
        status: VerificationStatus,
        name: Optional[str] = None,
        platform_account_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> RecipientVerification:
        return RecipientVerification(
            query_key=token.key,
            status=status,
            resolved_name=name,
            platform_account_id=platform_account_id,
            generation=token.generation,
            message=message,
        )
