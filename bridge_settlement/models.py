"""
Bridge Data Model

- ClientAccount: user payout address -> generated deposit identity
- Swap: one deposit-to-payout settlement record
- NormalizedTransaction: chain-independent incoming transaction
- PayoutTransaction: aggregated payout to one destination address
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .constants import ChainType, SwapType


@dataclass
class ClientAccount:
    """Maps a user's address to a bridge-generated receiving identity"""
    uuid: str
    address: str
    address_type: ChainType
    account_type: ChainType
    account: Dict[str, Any]  # {'address', 'address_index'} or {'memo'}

    @property
    def deposit_address(self) -> Optional[str]:
        """Wallet-chain deposit address (None for memo accounts)"""
        return self.account.get('address')

    @property
    def memo(self) -> Optional[str]:
        """Account-chain memo (None for wallet accounts)"""
        return self.account.get('memo')

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['address_type'] = self.address_type.value
        data['account_type'] = self.account_type.value
        return data


@dataclass
class Swap:
    """
    One settlement unit

    Pending while transfer_transaction_hash is None. `address` is the
    destination address of the owning client account; it is only filled in
    for queries that join client accounts (pending swaps).
    """
    uuid: str
    type: SwapType
    amount: int
    client_account_uuid: str
    deposit_transaction_hash: Optional[str]
    deposit_transaction_created: Optional[datetime]
    transfer_transaction_hash: Optional[str]
    processed: Optional[datetime]
    created: datetime
    address: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.transfer_transaction_hash is None

    @property
    def transfer_transaction_hashes(self) -> List[str]:
        if not self.transfer_transaction_hash:
            return []
        return self.transfer_transaction_hash.split(',')

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['type'] = self.type.value
        for key in ('deposit_transaction_created', 'processed', 'created'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class NormalizedTransaction:
    """Incoming transaction in chain-independent shape"""
    hash: str
    amount: int
    timestamp: int
    confirmations: Optional[int] = None
    memo: Optional[str] = None
    address: Optional[str] = None  # owner tag set during sweeps


@dataclass
class PayoutTransaction:
    """Aggregated payout to a single destination address"""
    address: str
    amount: Union[int, Decimal]
