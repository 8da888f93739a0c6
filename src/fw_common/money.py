"""Integer arithmetic for TZS amounts.

All amounts, fees and balances are int (TZS minor units). No float, no Decimal
in the money path. Percentages may be fractional (e.g. 2.5) and are converted
to an exact ratio before use.
"""

from dataclasses import dataclass
from fractions import Fraction

from src.fw_common.errors import InvalidAmountError


@dataclass(frozen=True)
class FeeBreakdown:
    gross: int   # quoted amount paid by the customer
    fee: int     # platform commission
    vat: int     # VAT charged on the commission
    net: int     # gross - fee, owed to the fundi


def tzs_display(amount: int) -> str:
    """Format TZS for display: 150000 -> 'TZS 150,000', -500 -> '-TZS 500'."""
    if amount < 0:
        return f"-TZS {-amount:,}"
    return f"TZS {amount:,}"


def validate_amount(amount: object) -> int:
    """Reject anything that is not a non-negative int (bools included)."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"expected integer TZS, got {amount!r}")
    if amount < 0:
        raise InvalidAmountError(f"amount must be non-negative, got {amount}")
    return amount


def percent_of(amount: int, percent: int | float | str) -> int:
    """ceil(amount * percent / 100) with integer ceiling: (a + b - 1) // b."""
    ratio = Fraction(str(percent)) / 100
    if ratio < 0:
        raise InvalidAmountError(f"percentage must be non-negative, got {percent}")
    if amount == 0 or ratio == 0:
        return 0
    numerator = amount * ratio.numerator
    return (numerator + ratio.denominator - 1) // ratio.denominator


def compute_fees(
    gross: int, fee_percent: int | float | str, vat_percent: int | float | str
) -> FeeBreakdown:
    """Split a gross job amount into platform fee, VAT on the fee, and net.

    Platform never loses a shilling to rounding: fee and VAT both round up.
    Invariants: fee + net == gross, 0 <= fee <= gross when fee_percent <= 100.
    """
    gross = validate_amount(gross)
    fee = percent_of(gross, fee_percent)
    vat = percent_of(fee, vat_percent)
    return FeeBreakdown(gross=gross, fee=fee, vat=vat, net=gross - fee)
