"""
Sweep Engine

Detects deposits on the chain a swap type receives on and records each one
exactly once as a pending swap.

Pass:
1. Load client accounts of the swap's account type
2. Fetch final deposits per account concurrently, tagged with their owner
3. Drop deposits already recorded (and duplicates within the batch)
4. Insert the remaining ones as pending swaps in one ledger write
"""

import asyncio
from typing import Dict, List, Tuple

from loguru import logger

from .constants import ChainType, SwapType, account_type_for
from .models import ClientAccount, NormalizedTransaction


class SweepEngine:
    """Records new deposits as pending swaps"""

    def __init__(self, ledger, normalizer):
        """
        Initialize sweep engine

        Args:
            ledger: SwapLedger
            normalizer: TransactionNormalizer
        """
        self.ledger = ledger
        self.normalizer = normalizer
        self._locks: Dict[SwapType, asyncio.Lock] = {swap_type: asyncio.Lock() for swap_type in SwapType}

    async def _fetch_wallet_deposits(self, accounts: List[ClientAccount]) -> List[NormalizedTransaction]:
        results = await asyncio.gather(*[
            self.normalizer.get_incoming_transactions(account.account, ChainType.WAGERR)
            for account in accounts
        ])

        deposits = []
        for account, transactions in zip(accounts, results):
            for tx in transactions:
                tx.address = account.deposit_address
                deposits.append(tx)
        return deposits

    async def _fetch_account_deposits(self, accounts: List[ClientAccount]) -> List[NormalizedTransaction]:
        # One history read for the shared receiving address, filtered per memo
        history = await self.normalizer.get_incoming_account_transactions()

        deposits = []
        for account in accounts:
            for tx in self.normalizer.filter_memo(history, account.memo):
                tx.memo = account.memo
                deposits.append(tx)
        return deposits

    def _resolve_owners(
        self,
        transactions: List[NormalizedTransaction],
        accounts: List[ClientAccount],
        account_type: ChainType
    ) -> List[Tuple[NormalizedTransaction, ClientAccount]]:
        if account_type is ChainType.WAGERR:
            owners = {account.deposit_address: account for account in accounts}
            key = lambda tx: tx.address
        else:
            owners = {account.memo: account for account in accounts}
            key = lambda tx: tx.memo

        resolved = []
        for tx in transactions:
            owner = owners.get(key(tx))
            if owner is None:
                logger.warning(f"No client account for deposit {tx.hash} ({key(tx)}), skipped")
                continue
            resolved.append((tx, owner))
        return resolved

    async def sweep_pending(self, swap_type: SwapType) -> int:
        """
        Record new deposits for a swap type

        Re-running a pass without new deposits inserts nothing.

        Returns:
            Number of swaps inserted
        """
        swap_type = SwapType(swap_type)
        account_type = account_type_for(swap_type)

        async with self._locks[swap_type]:
            accounts = self.ledger.get_client_accounts(account_type)
            if not accounts:
                logger.debug(f"[{swap_type.value}] No client accounts to sweep")
                return 0

            if account_type is ChainType.WAGERR:
                deposits = await self._fetch_wallet_deposits(accounts)
            else:
                deposits = await self._fetch_account_deposits(accounts)

            known_hashes = self.ledger.get_all_swap_deposit_hashes(swap_type)
            new_deposits = []
            for tx in deposits:
                if tx.hash in known_hashes:
                    continue
                known_hashes.add(tx.hash)
                new_deposits.append(tx)

            if not new_deposits:
                logger.info(f"[{swap_type.value}] No new deposits")
                return 0

            items = self._resolve_owners(new_deposits, accounts, account_type)
            inserted = self.ledger.insert_swap_batch(items)

            logger.info(f"✓ [{swap_type.value}] Swept {len(inserted)} new deposits")
            return len(inserted)

    async def sweep_all(self) -> Dict[SwapType, int]:
        """Sweep every swap type, one after the other"""
        results = {}
        for swap_type in SwapType:
            results[swap_type] = await self.sweep_pending(swap_type)
        return results
