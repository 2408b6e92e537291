"""Withhold → act → compensate-on-failure primitive shared by money-moving workflows"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional
from wallet_transfer.domain.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    NetworkTimeoutError,
    RefundFailedError,
)

logger = logging.getLogger(__name__)


class CompensationState(str, Enum):
    NOT_WITHHELD = "not_withheld"  # withhold failed, nothing to give back
    COMMITTED = "committed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass(frozen=True)
class CompensationResult:
    state: CompensationState
    reference: Optional[str] = None
    confirmation: Optional[str] = None
    compensation_reference: Optional[str] = None
    error: Optional[Exception] = None
    compensation_error: Optional[Exception] = None

    @property
    def failure_reason(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


class CompensatingTransaction:
    """
    Run a money-moving step bracketed by a withhold and a compensating refund.

    Guarantees:
    - compensate is never called unless withhold returned a reference
    - compensate is called exactly once when the action fails after a
      successful withhold, including on timeout or unexpected exceptions
    - a failed compensation is reported, not retried

    Every call runs under asyncio.wait_for when a timeout is set.
    """

    def __init__(
        self,
        withhold: Callable[[], Awaitable[str]],
        action: Callable[[str], Awaitable[str]],
        compensate: Callable[[str], Awaitable[str]],
        timeout: Optional[float] = None,
        on_withheld: Optional[Callable[[str], None]] = None,
    ):
        self.withhold = withhold
        self.action = action
        self.compensate = compensate
        self.timeout = timeout
        self.on_withheld = on_withheld

    async def run(self) -> CompensationResult:
        try:
            reference = await self._call(self.withhold(), GatewayUnavailableError, "withhold")
        except GatewayError as e:
            return CompensationResult(state=CompensationState.NOT_WITHHELD, error=e)

        if self.on_withheld is not None:
            self.on_withheld(reference)

        try:
            confirmation = await self._call(self.action(reference), NetworkTimeoutError, "action")
            return CompensationResult(
                state=CompensationState.COMMITTED,
                reference=reference,
                confirmation=confirmation,
            )
        except Exception as e:  # any failure after funds were taken must be compensated
            action_error = e

        logger.warning(
            f"Action failed after withhold, compensating: {action_error}",
            extra={"reference": reference},
        )
        try:
            compensation_reference = await self._call(self.compensate(reference), RefundFailedError, "compensate")
        except Exception as e:
            logger.error(
                f"Compensation failed, funds held: {e}",
                extra={"reference": reference},
            )
            return CompensationResult(
                state=CompensationState.COMPENSATION_FAILED,
                reference=reference,
                error=action_error,
                compensation_error=e,
            )

        return CompensationResult(
            state=CompensationState.COMPENSATED,
            reference=reference,
            compensation_reference=compensation_reference,
            error=action_error,
        )

    async def _call(self, awaitable: Awaitable[str], timeout_error: type, step: str) -> str:
        if self.timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise timeout_error(f"{step} timed out after {self.timeout}s") from e
