"""Fee calculation for money-moving operations

Fees are quoted once, at review time, and frozen with the request. Nothing
downstream of the confirmation gate calls into this module again.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
from wallet_transfer.domain.models import FeeQuote, PaymentChannel, TransferCategory


@dataclass(frozen=True)
class ChannelSchedule:
    """Percentage fee with optional floor and cap, in minor units"""

    rate: Decimal
    min_minor: Optional[int] = None
    max_minor: Optional[int] = None

    def apply(self, amount_minor: int) -> int:
        fee = _percent_of(amount_minor, self.rate)
        if self.min_minor is not None:
            fee = max(fee, self.min_minor)
        if self.max_minor is not None:
            fee = min(fee, self.max_minor)
        return fee


# Platform fee per channel:
# - checkout: 1.6% capped at 20,000.00
# - virtual_account: 0.5%, min 10.00, cap 2,000.00
# - bank_transfer: 0.5%, min 20.00, cap 2,000.00
DEFAULT_SCHEDULES: Dict[PaymentChannel, ChannelSchedule] = {
    PaymentChannel.CHECKOUT: ChannelSchedule(rate=Decimal("0.016"), max_minor=2_000_000),
    PaymentChannel.VIRTUAL_ACCOUNT: ChannelSchedule(rate=Decimal("0.005"), min_minor=1_000, max_minor=200_000),
    PaymentChannel.BANK_TRANSFER: ChannelSchedule(rate=Decimal("0.005"), min_minor=2_000, max_minor=200_000),
}

# Outbound transfers carry an extra 0.5% capped at 2,000.00
TRANSFER_SURCHARGE = ChannelSchedule(rate=Decimal("0.005"), max_minor=200_000)


def _percent_of(amount_minor: int, rate: Decimal) -> int:
    return int((Decimal(amount_minor) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class FeeCalculator:
    """Pure fee quote: amount + category + channel -> fee and total debit"""

    def __init__(
        self,
        schedules: Optional[Dict[PaymentChannel, ChannelSchedule]] = None,
        transfer_surcharge: Optional[ChannelSchedule] = TRANSFER_SURCHARGE,
    ):
        self.schedules = schedules or DEFAULT_SCHEDULES
        self.transfer_surcharge = transfer_surcharge

    def compute(
        self,
        amount_minor: int,
        category: Optional[TransferCategory],
        channel: PaymentChannel = PaymentChannel.BANK_TRANSFER,
    ) -> FeeQuote:
        """
        Quote the fee for moving amount_minor through channel.

        category=None prices a non-transfer charge (e.g. a paid platform
        service), which skips the transfer surcharge.

        Example:
            5000 via bank_transfer as a transfer
            → channel fee max(25, 2000) = 2000, surcharge 25
            → fee 2025, total debit 7025
        """
        if amount_minor <= 0:
            return FeeQuote(fee_minor=0, total_debit_minor=max(amount_minor, 0))

        fee = self.schedules[channel].apply(amount_minor)
        if category is not None and self.transfer_surcharge is not None:
            fee += self.transfer_surcharge.apply(amount_minor)

        return FeeQuote(fee_minor=fee, total_debit_minor=amount_minor + fee)
