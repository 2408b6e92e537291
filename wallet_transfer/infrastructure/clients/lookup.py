"""Account name enquiry client for bank accounts and platform wallets"""

import httpx
from typing import Optional, Tuple
from wallet_transfer.config import settings
from wallet_transfer.domain.exceptions import LookupNotFoundError, LookupTransientError


class LookupClient:
    """Client for the bank lookup and wallet directory APIs"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.lookup_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def lookup_bank_account(self, bank_code: str, account_number: str) -> str:
        """
        Resolve a bank account to its holder name.

        Raises:
            LookupNotFoundError: No such account at that bank
            LookupTransientError: On timeout, 5xx, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/v1/transfers/bank/lookup",
                    json={"accountNumber": account_number, "bankCode": bank_code},
                )
                if response.status_code in (400, 404):
                    raise LookupNotFoundError("Account lookup failed")
                response.raise_for_status()
                data = response.json()

                account_name = (data.get("data") or {}).get("accountName")
                if not account_name:
                    raise LookupNotFoundError(data.get("message") or "Account lookup failed")
                return account_name

            except httpx.TimeoutException as e:
                raise LookupTransientError(f"Lookup timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise LookupTransientError(f"Lookup error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise LookupTransientError(f"Lookup service unreachable: {e}") from e
            except (AttributeError, ValueError, TypeError) as e:
                raise LookupTransientError(f"Invalid lookup response: {e}") from e

    async def lookup_platform_account(self, query: str) -> Tuple[str, str]:
        """
        Resolve a wallet account number to (platform_account_id, display_name).

        Raises:
            LookupNotFoundError: No platform user with that account number
            LookupTransientError: On timeout, 5xx, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/v1/wallets/lookup",
                    json={"accNumber": query},
                )
                if response.status_code == 404:
                    raise LookupNotFoundError("User not found")
                response.raise_for_status()
                data = response.json()

                name = data.get("receiverName") or data.get("full_name")
                wallet_id = data.get("walletId")
                if not name or not wallet_id:
                    raise LookupNotFoundError(data.get("message") or "User not found")
                return wallet_id, name

            except httpx.TimeoutException as e:
                raise LookupTransientError(f"Lookup timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise LookupTransientError(f"Lookup error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise LookupTransientError(f"Lookup service unreachable: {e}") from e
            except (AttributeError, ValueError, TypeError) as e:
                raise LookupTransientError(f"Invalid lookup response: {e}") from e
