"""
Bridge Constants

Chain types, swap directions and unit conversion shared by every component.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any


class ChainType(str, Enum):
    """Chains the bridge settles on"""
    WAGERR = 'wagerr'   # wallet chain (JSON-RPC, confirmation finality)
    BNB = 'bnb'         # account chain (memo finality)


class SwapType(str, Enum):
    """Swap directions"""
    WAGERR_TO_BWAGERR = 'wagerr_to_bwagerr'
    BWAGERR_TO_WAGERR = 'bwagerr_to_wagerr'


# Smallest-unit scale used for amounts and fees of both assets
COIN = 10 ** 9

SYMBOLS = {
    ChainType.WAGERR: 'WAGERR',
    ChainType.BNB: 'B-WAGERR',
}


def account_type_for(swap_type: SwapType) -> ChainType:
    """Chain of the generated receiving identity (where the user deposits)"""
    swap_type = SwapType(swap_type)
    if swap_type is SwapType.WAGERR_TO_BWAGERR:
        return ChainType.WAGERR
    return ChainType.BNB


def address_type_for(swap_type: SwapType) -> ChainType:
    """Chain of the user's payout address (the currency that gets sent out)"""
    swap_type = SwapType(swap_type)
    if swap_type is SwapType.WAGERR_TO_BWAGERR:
        return ChainType.BNB
    return ChainType.WAGERR


def swap_type_for_account(account_type: ChainType) -> SwapType:
    """Swap direction of deposits made to an account of the given type"""
    account_type = ChainType(account_type)
    if account_type is ChainType.WAGERR:
        return SwapType.WAGERR_TO_BWAGERR
    return SwapType.BWAGERR_TO_WAGERR


def to_smallest_unit(value: Any) -> int:
    """
    Convert a display amount (e.g. 1.5 WAGERR) to smallest units

    Rounds half up to a whole unit.

    Raises:
        InvalidOperation: If the value is not a finite number
    """
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise InvalidOperation(f"Amount is not finite: {value}")
    return int((amount * COIN).to_integral_value(rounding=ROUND_HALF_UP))


def from_smallest_unit(value: Any) -> Decimal:
    """Convert smallest units back to a display amount"""
    return Decimal(str(value)) / COIN


def parse_amount(value: Any) -> Decimal:
    """Parse a stored amount, treating anything non-numeric as zero"""
    if isinstance(value, bool) or value is None:
        return Decimal(0)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(0)
    if not amount.is_finite():
        return Decimal(0)
    return amount
