"""
Bridge Settlement Engine

Settlement and reconciliation for the WAGERR <-> B-WAGERR bridge.

Components:
- wallet_client: WAGERR wallet JSON-RPC client with wallet unlock
- account_client: BNB account chain client (history, bech32, multi-send)
- price_oracle: USD price of WAGERR
- ledger: SQLite ledger of client accounts and swaps
- transaction_normalizer: Chain history -> final deposits
- sweep_engine: Records new deposits exactly once
- settlement_engine: Aggregates, deducts fees, caps and pays out
- balance_checker: Chain deposits vs. recorded swaps
- swap_service: Swap request/finalize operations
- processor: Runs passes over both swap types

Settlement pass:
1. Gather pending swaps
2. Aggregate by destination address
3. Drop addresses that do not cover the withdrawal fee
4. Send one batched payout
5. Record the transfer hash on every included swap
"""

from .constants import (
    COIN,
    ChainType,
    SwapType,
)
from .errors import (
    BridgeError,
    LedgerWriteError,
    PayoutError,
    PriceFetchFailed,
    SettlementOutcome,
    SettlementStatus,
    TransientNetworkError,
    ValidationError,
    WalletStateError,
)
from .models import (
    ClientAccount,
    NormalizedTransaction,
    PayoutTransaction,
    Swap,
)
from .config import (
    BridgeConfig,
    FeeSchedule,
    load_config,
)
from .wallet_client import WalletChainClient
from .account_client import AccountChainClient
from .price_oracle import PriceOracleClient
from .ledger import SwapLedger
from .transaction_normalizer import TransactionNormalizer
from .sweep_engine import SweepEngine
from .settlement_engine import SettlementEngine
from .balance_checker import BalanceChecker
from .swap_service import SwapService
from .processor import SwapProcessor

__all__ = [
    # Types
    'COIN',
    'ChainType',
    'SwapType',
    'ClientAccount',
    'NormalizedTransaction',
    'PayoutTransaction',
    'Swap',

    # Errors and outcomes
    'BridgeError',
    'LedgerWriteError',
    'PayoutError',
    'PriceFetchFailed',
    'SettlementOutcome',
    'SettlementStatus',
    'TransientNetworkError',
    'ValidationError',
    'WalletStateError',

    # Configuration
    'BridgeConfig',
    'FeeSchedule',
    'load_config',

    # Clients
    'WalletChainClient',
    'AccountChainClient',
    'PriceOracleClient',

    # Ledger
    'SwapLedger',

    # Engines
    'TransactionNormalizer',
    'SweepEngine',
    'SettlementEngine',
    'BalanceChecker',
    'SwapService',
    'SwapProcessor',
]

__version__ = '1.0.0'
__description__ = 'WAGERR bridge settlement and reconciliation'
