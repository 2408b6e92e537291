"""Wallet ledger and bank-rail HTTP client implementing the transfer gateway"""

import httpx
from typing import Any, Dict, Optional
from wallet_transfer.config import settings
from wallet_transfer.domain.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    InsufficientFundsError,
    InvalidSecretError,
    NetworkTimeoutError,
    RecipientRejectedError,
    RefundFailedError,
)
from wallet_transfer.domain.models import (
    BankAccount,
    BankDestination,
    Destination,
    SenderProfile,
)
from wallet_transfer.infrastructure.observability.metrics import gateway_failures_counter, gateway_latency_histogram


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return body.get("message") or body.get("description") or body.get("error") or default
    return default


class WalletGatewayClient:
    """
    Client for the wallet service (debit, refund, internal ledger) and the
    bank-rail transfer API.

    Every money-moving call carries an Idempotency-Key header; the wallet
    service treats a repeated key as the same operation.
    """

    def __init__(
        self,
        wallet_base_url: str | None = None,
        bank_rail_base_url: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.wallet_base_url = wallet_base_url or settings.wallet_api_base
        self.bank_rail_base_url = bank_rail_base_url or settings.bank_rail_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def withhold(self, owner_id: str, amount_minor: int, secret: str, idempotency_key: str) -> str:
        """
        Debit total amount from the owner's wallet.

        Raises:
            InvalidSecretError: PIN rejected (401)
            InsufficientFundsError: Balance too low (402)
            GatewayUnavailableError: Timeout, network error, or any other failure
        """
        async with self._client() as client:
            try:
                with gateway_latency_histogram.labels(operation="withhold").time():
                    response = await client.post(
                        f"{self.wallet_base_url}/v1/wallets/{owner_id}/withhold",
                        json={"amount_minor": amount_minor, "pin": secret},
                        headers={"Idempotency-Key": idempotency_key},
                    )
                if response.status_code == 401:
                    raise InvalidSecretError(_error_message(response, "Invalid transaction PIN"))
                if response.status_code == 402:
                    raise InsufficientFundsError(_error_message(response, "Insufficient wallet balance"))
                response.raise_for_status()
                return response.json()["reference"]

            except GatewayError:
                gateway_failures_counter.labels(operation="withhold").inc()
                raise
            except httpx.TimeoutException as e:
                gateway_failures_counter.labels(operation="withhold").inc()
                raise GatewayUnavailableError(f"Wallet timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failures_counter.labels(operation="withhold").inc()
                raise GatewayUnavailableError(
                    _error_message(e.response, f"Wallet error: {e.response.status_code}")
                ) from e
            except httpx.RequestError as e:
                gateway_failures_counter.labels(operation="withhold").inc()
                raise GatewayUnavailableError(f"Wallet unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                gateway_failures_counter.labels(operation="withhold").inc()
                raise GatewayUnavailableError(f"Invalid withhold response from wallet: {e}") from e

    async def route(self, reference: str, destination: Destination) -> str:
        """
        Move withheld funds to a bank account or another platform wallet.

        Raises:
            RecipientRejectedError: Receiving side refused the transfer (4xx)
            NetworkTimeoutError: No answer within the timeout
            GatewayUnavailableError: Network error or 5xx
        """
        if isinstance(destination, BankDestination):
            url = f"{self.bank_rail_base_url}/v1/transfers/bank"
            payload: Dict[str, Any] = {
                "amount_minor": destination.amount_minor,
                "accountNumber": destination.account_number,
                "accountName": destination.account_name,
                "bankCode": destination.bank_code,
                "narration": destination.narration,
                "merchantTxRef": reference,
            }
        else:
            url = f"{self.wallet_base_url}/v1/ledger/transfers"
            payload = {
                "reference": reference,
                "recipient_platform_account_id": destination.platform_account_id,
                "amount_minor": destination.amount_minor,
                "narration": destination.narration,
            }

        async with self._client() as client:
            try:
                with gateway_latency_histogram.labels(operation="route").time():
                    response = await client.post(url, json=payload, headers={"Idempotency-Key": f"{reference}:route"})
                response.raise_for_status()
                data = response.json()

                # Bank rail reports some rejections inside a 200 body
                if str(data.get("code", "")) == "400":
                    raise RecipientRejectedError(data.get("description") or "Transfer rejected by bank")

                confirmation = data.get("confirmation") or (data.get("data") or {}).get("reference")
                if not confirmation:
                    raise GatewayUnavailableError("Routing response missing confirmation")
                return confirmation

            except GatewayError:
                gateway_failures_counter.labels(operation="route").inc()
                raise
            except httpx.TimeoutException as e:
                gateway_failures_counter.labels(operation="route").inc()
                raise NetworkTimeoutError(f"Transfer timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failures_counter.labels(operation="route").inc()
                message = _error_message(e.response, f"Transfer error: {e.response.status_code}")
                if e.response.status_code < 500:
                    raise RecipientRejectedError(message) from e
                raise GatewayUnavailableError(message) from e
            except httpx.RequestError as e:
                gateway_failures_counter.labels(operation="route").inc()
                raise GatewayUnavailableError(f"Transfer service unreachable: {e}") from e
            except (AttributeError, ValueError, TypeError) as e:
                gateway_failures_counter.labels(operation="route").inc()
                raise GatewayUnavailableError(f"Invalid transfer response: {e}") from e

    async def refund(self, reference: str, idempotency_key: str) -> str:
        """
        Return withheld funds to the sender.

        Raises:
            RefundFailedError: On any failure; callers must not retry inline
        """
        async with self._client() as client:
            try:
                with gateway_latency_histogram.labels(operation="refund").time():
                    response = await client.post(
                        f"{self.wallet_base_url}/v1/wallets/refunds",
                        json={"reference": reference},
                        headers={"Idempotency-Key": idempotency_key},
                    )
                response.raise_for_status()
                return response.json()["confirmation"]

            except httpx.TimeoutException as e:
                gateway_failures_counter.labels(operation="refund").inc()
                raise RefundFailedError(f"Refund timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failures_counter.labels(operation="refund").inc()
                raise RefundFailedError(
                    _error_message(e.response, f"Refund error: {e.response.status_code}")
                ) from e
            except httpx.RequestError as e:
                gateway_failures_counter.labels(operation="refund").inc()
                raise RefundFailedError(f"Wallet unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                gateway_failures_counter.labels(operation="refund").inc()
                raise RefundFailedError(f"Invalid refund response from wallet: {e}") from e

    async def get_sender_profile(self, owner_id: str) -> SenderProfile:
        """
        Fetch the owner's wallet identity and configured payout account.

        Raises:
            GatewayUnavailableError: On timeout, HTTP errors, or invalid response
        """
        async with self._client() as client:
            try:
                response = await client.get(f"{self.wallet_base_url}/v1/wallets/{owner_id}/profile")
                response.raise_for_status()
                data = response.json()

                payout = data.get("payout_account")
                return SenderProfile(
                    owner_id=owner_id,
                    platform_account_id=data["platform_account_id"],
                    wallet_account_number=data["wallet_account_number"],
                    wallet_bank_code=data.get("wallet_bank_code"),
                    display_name=data.get("display_name", ""),
                    payout_account=BankAccount(
                        bank_code=payout.get("bank_code", ""),
                        account_number=payout.get("account_number", ""),
                        account_name=payout.get("account_name", ""),
                        bank_name=payout.get("bank_name"),
                    )
                    if payout
                    else None,
                )

            except httpx.TimeoutException as e:
                raise GatewayUnavailableError(f"Wallet timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise GatewayUnavailableError(f"Wallet error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise GatewayUnavailableError(f"Wallet unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise GatewayUnavailableError(f"Invalid profile data from wallet: {e}") from e
