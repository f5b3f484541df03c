"""
Balance Checker

Reconciles what the chains say was deposited against what the ledger
recorded, over a recent window. A mismatch usually means a sweep is due, or
that a payout went out without being recorded.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger

from .constants import COIN, SYMBOLS, ChainType, SwapType, account_type_for, address_type_for, parse_amount
from .models import NormalizedTransaction

MEMO_LENGTH = 64


@dataclass
class BalanceReport:
    """Deposit vs. swap totals for one swap type, in smallest units"""
    swap_type: SwapType
    transaction: int
    swap: int
    window_start: int
    window_end: int

    @property
    def matches(self) -> bool:
        return self.transaction == self.swap


class BalanceChecker:
    """Compares chain deposits with ledger swaps"""

    def __init__(self, ledger, normalizer, window_hours: int = 48):
        """
        Initialize balance checker

        Args:
            ledger: SwapLedger
            normalizer: TransactionNormalizer
            window_hours: Reconciliation window ending now
        """
        self.ledger = ledger
        self.normalizer = normalizer
        self.window_seconds = window_hours * 60 * 60

    async def check_all_balances(self) -> List[BalanceReport]:
        reports = []
        for swap_type in SwapType:
            report = await self.get_balances(swap_type)
            self.print_balance(report)
            reports.append(report)
        return reports

    def print_balance(self, report: BalanceReport):
        receive_symbol = SYMBOLS[account_type_for(report.swap_type)]
        swap_symbol = SYMBOLS[address_type_for(report.swap_type)]

        logger.info(f"[{report.swap_type.value}] Transaction balance: {report.transaction / COIN} {receive_symbol}")
        logger.info(f"[{report.swap_type.value}] Swap balance: {report.swap / COIN} {swap_symbol}")
        if not report.matches:
            logger.warning(f"✗ [{report.swap_type.value}] Amounts do not match, try sweeping")

    async def get_balances(self, swap_type: SwapType, now: Optional[int] = None) -> BalanceReport:
        """
        Deposit and swap totals for a swap type over the window

        Args:
            swap_type: Swap direction
            now: Window end in epoch seconds (defaults to current time)
        """
        swap_type = SwapType(swap_type)
        end = int(now if now is not None else time.time())
        start = end - self.window_seconds

        transaction_balance = await self.get_balance_from_incoming_transactions(
            account_type_for(swap_type), start, end
        )
        swap_balance = self.get_swap_balance(swap_type, start, end)

        return BalanceReport(
            swap_type=swap_type,
            transaction=transaction_balance,
            swap=swap_balance,
            window_start=start,
            window_end=end,
        )

    def get_swap_balance(self, swap_type: SwapType, start: int, end: int) -> int:
        """Sum of recorded swap amounts whose deposit falls in [start, end]"""
        total = 0
        for swap in self.ledger.get_all_swaps(swap_type):
            created = swap.deposit_transaction_created or swap.created
            if created is None:
                continue
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            if start <= created.timestamp() <= end:
                total += int(parse_amount(swap.amount))
        return total

    async def get_balance_from_incoming_transactions(self, account_type: ChainType, start: int, end: int) -> int:
        """
        Sum of final deposits in [start, end]

        Wallet deposits count once they reach the confirmation threshold;
        account-chain deposits count when their memo belongs to a client.
        """
        account_type = ChainType(account_type)
        accounts = self.ledger.get_client_accounts(account_type)

        if account_type is ChainType.WAGERR:
            results = await asyncio.gather(*[
                self.normalizer.get_incoming_wallet_transactions(account.account['address_index'])
                for account in accounts
            ])
            transactions = [
                tx for batch in results for tx in batch
                if (tx.confirmations or 0) >= self.normalizer.min_confirmations
            ]
        else:
            history = await self.normalizer.get_incoming_account_transactions(since_ms=start * 1000)
            memos = {account.memo for account in accounts if account.memo}
            transactions = [tx for tx in history if tx.memo and tx.memo in memos]

        return sum(tx.amount for tx in transactions if start <= tx.timestamp <= end)

    async def get_unknown_memo_transactions(self) -> List[NormalizedTransaction]:
        """Account-chain deposits carrying a memo that belongs to no client account"""
        history = await self.normalizer.get_incoming_account_transactions()
        memos = {account.memo for account in self.ledger.get_client_accounts(ChainType.BNB) if account.memo}

        unknown = [
            tx for tx in history
            if tx.memo and len(tx.memo) == MEMO_LENGTH and tx.memo not in memos
        ]
        for tx in unknown:
            logger.warning(
                f"Unknown memo deposit {tx.hash}: {tx.amount / COIN} {SYMBOLS[ChainType.BNB]} "
                f"memo={tx.memo} at {datetime.fromtimestamp(tx.timestamp, tz=timezone.utc).isoformat()}"
            )
        return unknown
