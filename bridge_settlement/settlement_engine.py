"""
Settlement Engine

Pays out pending swaps and marks them settled.

Pass:
    Gather pending -> Aggregate by address -> Filter invalid -> Send -> Record

A pass ends either COMPLETED (payout sent, ledger updated) or with a typed
SettlementOutcome status and no ledger change, so the swaps stay pending for
the next pass. Send failures propagate; nothing is recorded for them.
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

from loguru import logger

from .config import FeeSchedule
from .constants import COIN, SYMBOLS, ChainType, SwapType, address_type_for, parse_amount
from .errors import (
    PriceFetchFailed,
    SettlementOutcome,
    SettlementStatus,
    ValidationError,
)
from .models import PayoutTransaction, Swap


class SettlementEngine:
    """
    Aggregates pending swaps per destination address and dispatches one
    batched payout per pass
    """

    def __init__(
        self,
        ledger,
        wallet_client,
        account_client,
        price_oracle,
        fees: FeeSchedule,
        symbol: str = 'B-WAGERR',
        signer_key: str = ''
    ):
        """
        Initialize settlement engine

        Args:
            ledger: SwapLedger
            wallet_client: WalletChainClient (pays out WAGERR)
            account_client: AccountChainClient (pays out B-WAGERR)
            price_oracle: PriceOracleClient
            fees: Withdrawal fee per payout currency
            symbol: Account-chain token denom
            signer_key: Key identifier handed to the account-chain signer
        """
        self.ledger = ledger
        self.wallet_client = wallet_client
        self.account_client = account_client
        self.price_oracle = price_oracle
        self.fees = fees
        self.symbol = symbol
        self.signer_key = signer_key
        self._locks: Dict[SwapType, asyncio.Lock] = {swap_type: asyncio.Lock() for swap_type in SwapType}

    def get_fee(self, chain: ChainType) -> int:
        """Per-output withdrawal fee in smallest units"""
        return self.fees.get(chain)

    @staticmethod
    def get_transactions(swaps: List[Swap]) -> List[PayoutTransaction]:
        """
        Combine swaps going to the same address

        Amounts that are not numeric count as 0. Addresses keep the order
        they first appear in.
        """
        if not isinstance(swaps, (list, tuple)):
            return []

        amounts: Dict[str, Decimal] = {}
        for swap in swaps:
            amounts[swap.address] = amounts.get(swap.address, Decimal(0)) + parse_amount(swap.amount)

        return [PayoutTransaction(address=address, amount=amount) for address, amount in amounts.items()]

    def get_valid_swaps(self, swaps: List[Swap], swap_type: SwapType) -> List[Swap]:
        """
        Drop every swap of an address whose total does not exceed the fee

        Those swaps stay pending until more value accumulates.
        """
        fee = self.get_fee(address_type_for(swap_type))

        invalid_addresses = {
            tx.address for tx in self.get_transactions(swaps)
            if tx.amount - fee <= 0
        }
        if invalid_addresses:
            logger.info(f"Skipping {len(invalid_addresses)} addresses below the withdrawal fee")

        return [swap for swap in swaps if swap.address not in invalid_addresses]

    async def send(self, swap_type: SwapType, transactions: List[PayoutTransaction]) -> List[str]:
        """
        Send one multi-destination payout

        Args:
            swap_type: Swap direction (selects the payout chain)
            transactions: Aggregated payouts, fee not yet deducted

        Returns:
            Transaction hashes

        Raises:
            ValidationError: Invalid swap type
        """
        try:
            swap_type = SwapType(swap_type)
        except ValueError as e:
            raise ValidationError('Invalid swap type') from e

        if swap_type is SwapType.WAGERR_TO_BWAGERR:
            fee = self.get_fee(ChainType.BNB)
            outputs = [
                {
                    'to': tx.address,
                    'coins': [{
                        'denom': self.symbol,
                        'amount': int(tx.amount - fee),
                    }],
                }
                for tx in transactions
            ]
            return await self.account_client.multi_send(self.signer_key, outputs, '')

        fee = self.get_fee(ChainType.WAGERR)
        destinations = {
            tx.address: float(max(Decimal(0), Decimal(tx.amount - fee) / COIN))
            for tx in transactions
        }
        return await self.wallet_client.multi_send(destinations)

    async def process_swaps(self, swaps: List[Swap], swap_type: SwapType) -> SettlementOutcome:
        """
        Settle the given swaps

        Returns:
            COMPLETED outcome, or NO_SWAPS_TO_PROCESS if nothing is valid

        Raises:
            ValidationError, TransientNetworkError, WalletStateError, PayoutError:
                payout failed, nothing recorded
            LedgerWriteError: payout sent but not recorded
        """
        swap_type = SwapType(swap_type)
        valid_swaps = self.get_valid_swaps(swaps, swap_type)
        transactions = self.get_transactions(valid_swaps)

        if not transactions:
            return SettlementOutcome.failed(SettlementStatus.NO_SWAPS_TO_PROCESS, 'No valid swaps to process')

        tx_hashes = await self.send(swap_type, transactions)
        joined = ','.join(tx_hashes)
        logger.info(f"✓ [{swap_type.value}] Payout sent: {joined}")

        ids = [swap.uuid for swap in valid_swaps]
        self.ledger.update_swaps_transfer_transaction_hash(ids, joined)

        sent_currency = address_type_for(swap_type)
        transaction_amount = sum((tx.amount for tx in transactions), Decimal(0))
        total_fee = self.get_fee(sent_currency) * len(transactions)

        return SettlementOutcome(
            status=SettlementStatus.COMPLETED,
            swaps=valid_swaps,
            total_amount=transaction_amount - total_fee,
            total_fee=total_fee,
        )

    async def process_all_of_type(self, swap_type: SwapType) -> Optional[SettlementOutcome]:
        """
        Settle every pending swap of a type

        Returns:
            COMPLETED outcome, or None when there is nothing to settle
        """
        swap_type = SwapType(swap_type)
        async with self._locks[swap_type]:
            swaps = self.ledger.get_pending_swaps(swap_type)
            outcome = await self.process_swaps(swaps, swap_type)

        if outcome.status is SettlementStatus.NO_SWAPS_TO_PROCESS:
            return None
        return outcome

    async def process_auto_swaps(
        self,
        current_period_value,
        period_limit,
        swap_type: SwapType
    ) -> SettlementOutcome:
        """
        Settle pending swaps up to a USD value cap

        Aggregated payouts above the fee are taken smallest first while the
        period value is below the limit; the payout that crosses the limit is
        still included.

        Args:
            current_period_value: USD value already paid out this period
            period_limit: USD cap for the period
            swap_type: Swap direction

        Returns:
            SettlementOutcome with total_usd (this batch) and period_value
            (current + batch) when COMPLETED
        """
        swap_type = SwapType(swap_type)

        try:
            usd_price = await self.price_oracle.get_usd_price()
        except PriceFetchFailed as e:
            logger.warning(f"[{swap_type.value}] Price fetch failed: {e}")
            return SettlementOutcome.failed(SettlementStatus.PRICE_FETCH_FAILED, str(e))

        if usd_price is None or Decimal(usd_price) <= 0:
            return SettlementOutcome.failed(SettlementStatus.PRICE_FETCH_FAILED, f"Invalid USD price: {usd_price}")
        usd_price = Decimal(usd_price)

        async with self._locks[swap_type]:
            # only payable addresses count toward the cap
            pending_swaps = self.get_valid_swaps(self.ledger.get_pending_swaps(swap_type), swap_type)
            pending_transactions = sorted(self.get_transactions(pending_swaps), key=lambda tx: tx.amount)

            if not pending_transactions:
                return SettlementOutcome.failed(SettlementStatus.NO_SWAPS_TO_PROCESS, 'No pending swaps')

            limit = Decimal(str(period_limit))
            current_amount = Decimal(str(current_period_value))
            if current_amount >= limit:
                return SettlementOutcome.failed(
                    SettlementStatus.DAILY_LIMIT_HIT,
                    f"Period value {current_amount} USD reached limit {limit} USD"
                )

            total = Decimal(0)
            batch: List[PayoutTransaction] = []
            for tx in pending_transactions:
                if current_amount >= limit:
                    break
                usd_amount = Decimal(tx.amount) / COIN * usd_price
                batch.append(tx)
                current_amount += usd_amount
                total += usd_amount

            batch_addresses = {tx.address for tx in batch}
            swaps = [swap for swap in pending_swaps if swap.address in batch_addresses]

            outcome = await self.process_swaps(swaps, swap_type)

        if outcome.completed:
            outcome.total_usd = total
            outcome.period_value = Decimal(str(current_period_value)) + total
            symbol = SYMBOLS[address_type_for(swap_type)]
            logger.info(
                f"✓ [{swap_type.value}] Auto payout {outcome.total_amount / COIN} {symbol} "
                f"(${total:.2f}, period ${outcome.period_value:.2f} / ${limit})"
            )
        return outcome
