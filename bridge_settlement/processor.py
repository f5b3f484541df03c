"""
Swap Processor

Runs sweep, settlement and reconciliation passes over both swap types.

Passes run one swap type after the other. A typed outcome or a chain error
on one swap type is logged and the next swap type is processed; a ledger
write failure stops the run.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from loguru import logger

from .account_client import AccountChainClient
from .balance_checker import BalanceChecker
from .config import BridgeConfig, FeeSchedule
from .constants import COIN, SYMBOLS, SwapType, address_type_for
from .errors import BridgeError, LedgerWriteError, SettlementOutcome, SettlementStatus, ValidationError
from .ledger import SwapLedger
from .price_oracle import PriceOracleClient
from .settlement_engine import SettlementEngine
from .swap_service import SwapService
from .sweep_engine import SweepEngine
from .transaction_normalizer import TransactionNormalizer
from .wallet_client import WalletChainClient


def current_period(now: Optional[datetime] = None) -> str:
    """Period key of the daily cap (UTC date)"""
    return (now or datetime.now(timezone.utc)).strftime('%Y-%m-%d')


class SwapProcessor:
    """
    Bridge pass orchestrator

    Features:
    - Sweep new deposits for every swap type
    - Settle all pending swaps, or auto-settle under a daily USD cap
    - Persist the daily USD total in the ledger
    - Reconcile chain deposits with recorded swaps
    """

    def __init__(
        self,
        ledger: SwapLedger,
        sweep_engine: SweepEngine,
        settlement_engine: SettlementEngine,
        balance_checker: BalanceChecker,
        swap_service: Optional[SwapService] = None,
        daily_limit_usd: Optional[float] = None,
        clients: Optional[list] = None
    ):
        """
        Initialize processor

        Args:
            ledger: Swap ledger
            sweep_engine: Sweep engine
            settlement_engine: Settlement engine
            balance_checker: Balance checker
            swap_service: Client-facing swap operations
            daily_limit_usd: Default cap for auto payouts
            clients: Chain clients to close on shutdown
        """
        self.ledger = ledger
        self.sweep_engine = sweep_engine
        self.settlement_engine = settlement_engine
        self.balance_checker = balance_checker
        self.swap_service = swap_service
        self.daily_limit_usd = daily_limit_usd
        self.clients = clients or []

        logger.info("Swap processor initialized")

    @classmethod
    def from_config(cls, config: BridgeConfig) -> 'SwapProcessor':
        """Wire every component from configuration"""
        fees = FeeSchedule.from_config(config)
        ledger = SwapLedger(config.ledger.path)
        wallet_client = WalletChainClient.from_config(config.wagerr)
        account_client = AccountChainClient.from_config(config.binance)
        price_oracle = PriceOracleClient.from_config(config.price_oracle)

        normalizer = TransactionNormalizer(
            wallet_client,
            account_client,
            deposit_address=config.binance.deposit_address,
            min_confirmations=config.wagerr.min_confirmations,
        )

        settlement_engine = SettlementEngine(
            ledger,
            wallet_client,
            account_client,
            price_oracle,
            fees,
            symbol=config.binance.symbol,
            signer_key=config.binance.signer_key,
        )

        return cls(
            ledger=ledger,
            sweep_engine=SweepEngine(ledger, normalizer),
            settlement_engine=settlement_engine,
            balance_checker=BalanceChecker(ledger, normalizer, config.settlement.balance_window_hours),
            swap_service=SwapService(ledger, wallet_client, account_client, normalizer, fees),
            daily_limit_usd=config.settlement.daily_limit_usd,
            clients=[wallet_client, account_client],
        )

    async def sweep_all(self) -> Dict[SwapType, int]:
        """Sweep every swap type; returns swaps inserted per type"""
        results = {}
        for swap_type in SwapType:
            logger.info(f"Sweeping {swap_type.value}")
            try:
                results[swap_type] = await self.sweep_engine.sweep_pending(swap_type)
            except LedgerWriteError:
                raise
            except BridgeError as e:
                logger.error(f"✗ [{swap_type.value}] Sweep failed: {e}")
                results[swap_type] = 0
        return results

    def print_outcome(self, swap_type: SwapType, outcome: Optional[SettlementOutcome]):
        if outcome is None or outcome.status is SettlementStatus.NO_SWAPS_TO_PROCESS:
            logger.info(f"[{swap_type.value}] No swaps found")
            return

        if not outcome.completed:
            logger.warning(f"[{swap_type.value}] {outcome.status.value}: {outcome.message}")
            return

        symbol = SYMBOLS[address_type_for(swap_type)]
        logger.info(f"✓ [{swap_type.value}] Completed {len(outcome.swaps)} swaps")
        logger.info(f"✓ [{swap_type.value}] Amount sent: {outcome.total_amount / COIN} {symbol}")

    async def process_all_swaps(self) -> Dict[SwapType, Optional[SettlementOutcome]]:
        """Settle all pending swaps of every type"""
        results = {}
        for swap_type in SwapType:
            logger.info(f"Processing swaps for {swap_type.value}")
            try:
                outcome = await self.settlement_engine.process_all_of_type(swap_type)
            except LedgerWriteError:
                logger.critical(f"✗ [{swap_type.value}] Payout sent but not recorded, reconcile manually")
                raise
            except BridgeError as e:
                logger.error(f"✗ [{swap_type.value}] Settlement failed: {e}")
                outcome = None

            self.print_outcome(swap_type, outcome)
            results[swap_type] = outcome
        return results

    async def process_auto_swaps(self, daily_limit: Optional[float] = None) -> Dict[SwapType, SettlementOutcome]:
        """
        Settle pending swaps of every type under the daily USD cap

        Both swap types count against the same daily total.

        Args:
            daily_limit: USD cap (defaults to the configured daily_limit_usd)
        """
        limit = daily_limit if daily_limit is not None else self.daily_limit_usd
        if limit is None:
            raise ValidationError("No daily limit configured for auto swaps")
        limit = Decimal(str(limit))

        period = current_period()
        current = self.ledger.get_period_value(period)
        logger.info(f"Auto swaps for {period}: ${current} of ${limit} used")

        results = {}
        for swap_type in SwapType:
            logger.info(f"Auto processing swaps for {swap_type.value}")
            try:
                outcome = await self.settlement_engine.process_auto_swaps(current, limit, swap_type)
            except LedgerWriteError:
                logger.critical(f"✗ [{swap_type.value}] Payout sent but not recorded, reconcile manually")
                raise
            except BridgeError as e:
                logger.error(f"✗ [{swap_type.value}] Auto settlement failed: {e}")
                continue

            if outcome.completed:
                current = self.ledger.add_period_value(period, outcome.total_usd)

            self.print_outcome(swap_type, outcome)
            results[swap_type] = outcome
        return results

    async def check_all_balances(self):
        return await self.balance_checker.check_all_balances()

    async def close(self):
        """Close chain clients and the ledger"""
        for client in self.clients:
            await client.close()
        self.ledger.close()
