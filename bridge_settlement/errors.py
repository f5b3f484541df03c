"""
Error Taxonomy

Exceptions:
- TransientNetworkError: RPC/HTTP timeout or connection failure
- WalletStateError: Wallet stayed locked or could not be unlocked
- ValidationError: Invalid input (swap type, address, payout outputs, config)
- PayoutError: Chain rejected an outbound send
- LedgerWriteError: Ledger write failed and was rolled back
- PriceFetchFailed: Price oracle could not produce a USD price

Expected business conditions of a settlement pass are not exceptions.
They are reported through SettlementOutcome.status so the caller can branch
on the variant and move on to the next swap type.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Swap


class BridgeError(Exception):
    """Base class for all bridge errors"""


class TransientNetworkError(BridgeError):
    """Network failure talking to a chain node or the price oracle"""


class WalletStateError(BridgeError):
    """Wallet is locked and unlocking failed"""


class ValidationError(BridgeError):
    """Input failed validation, nothing was applied"""


class PayoutError(BridgeError):
    """A chain refused or failed an outbound multi-send"""


class LedgerWriteError(BridgeError):
    """A ledger write failed; the transaction was rolled back"""


class PriceFetchFailed(BridgeError):
    """No usable USD price"""


class AccountNotFound(BridgeError):
    """No client account for the given uuid"""


class AccountCreationFailed(BridgeError):
    """The wallet could not generate a deposit address"""


class SettlementStatus(Enum):
    """Terminal state of a settlement pass"""
    COMPLETED = 'completed'
    PRICE_FETCH_FAILED = 'price_fetch_failed'
    NO_SWAPS_TO_PROCESS = 'no_swaps_to_process'
    DAILY_LIMIT_HIT = 'daily_limit_hit'


@dataclass
class SettlementOutcome:
    """Result of a settlement pass"""
    status: SettlementStatus
    swaps: List['Swap'] = field(default_factory=list)
    total_amount: Decimal = Decimal(0)
    total_fee: int = 0
    total_usd: Optional[Decimal] = None
    period_value: Optional[Decimal] = None
    message: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is SettlementStatus.COMPLETED

    @classmethod
    def failed(cls, status: SettlementStatus, message: str) -> 'SettlementOutcome':
        return cls(status=status, message=message)
