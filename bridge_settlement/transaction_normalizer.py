"""
Transaction Normalizer

Turns raw chain history into NormalizedTransaction records and applies the
finality gates:
- wallet chain: confirmations >= min_confirmations
- account chain: trimmed memo equals the client account memo
"""

import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from loguru import logger

from .constants import ChainType, to_smallest_unit
from .models import ClientAccount, NormalizedTransaction


def parse_timestamp(value) -> int:
    """
    Epoch seconds (floored) from an ISO-8601 string or a numeric epoch

    Numeric values above 1e11 are taken as milliseconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return int(math.floor(seconds))

    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(math.floor(parsed.timestamp()))


def parse_smallest_unit(value) -> int:
    """Whole number of smallest units; decimal strings like "100.00000000" are accepted"""
    amount = Decimal(str(value))
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise ValueError(f"Not a whole smallest-unit amount: {value}")
    return int(amount)


class TransactionNormalizer:
    """Fetches and normalizes incoming deposits for client accounts"""

    def __init__(self, wallet_client, account_client, deposit_address: str, min_confirmations: int = 6):
        """
        Initialize normalizer

        Args:
            wallet_client: WalletChainClient
            account_client: AccountChainClient
            deposit_address: Bridge receiving address on the account chain
            min_confirmations: Wallet-chain confirmation threshold
        """
        self.wallet_client = wallet_client
        self.account_client = account_client
        self.deposit_address = deposit_address
        self.min_confirmations = min_confirmations

    async def get_incoming_transactions(
        self,
        account: Dict,
        account_type: ChainType
    ) -> List[NormalizedTransaction]:
        """
        Final incoming deposits for one receiving identity

        Args:
            account: {'address', 'address_index'} (wagerr) or {'memo'} (bnb)
            account_type: Chain of the receiving identity

        Returns:
            Normalized deposits that passed the finality gate
        """
        if isinstance(account, ClientAccount):
            account = account.account

        account_type = ChainType(account_type)
        if account_type is ChainType.WAGERR:
            transactions = await self.get_incoming_wallet_transactions(account['address_index'])
            return [
                tx for tx in transactions
                if (tx.confirmations or 0) >= self.min_confirmations
            ]

        transactions = await self.get_incoming_account_transactions()
        return self.filter_memo(transactions, account['memo'])

    async def get_incoming_wallet_transactions(self, address_index: str) -> List[NormalizedTransaction]:
        """Wallet-chain deposits to an address, without the confirmation gate"""
        raw_transactions = await self.wallet_client.get_incoming_transactions(address_index)

        transactions = []
        for raw in raw_transactions:
            try:
                transactions.append(NormalizedTransaction(
                    hash=raw['txid'],
                    amount=to_smallest_unit(raw['amount']),
                    timestamp=parse_timestamp(raw.get('time', raw.get('timestamp', 0))),
                    confirmations=int(raw.get('confirmations') or 0),
                    address=raw.get('address'),
                ))
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.warning(f"Skipping malformed wallet transaction {raw.get('txid')}: {e}")
        return transactions

    async def get_incoming_account_transactions(self, since_ms: Optional[int] = None) -> List[NormalizedTransaction]:
        """Account-chain deposits to the bridge address, without the memo gate"""
        raw_transactions = await self.account_client.get_incoming_transactions(self.deposit_address, since_ms)

        transactions = []
        for raw in raw_transactions:
            try:
                transactions.append(NormalizedTransaction(
                    hash=raw['txHash'],
                    amount=parse_smallest_unit(raw['value']),
                    timestamp=parse_timestamp(raw['timeStamp']),
                    memo=(raw.get('memo') or '').strip(),
                ))
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.warning(f"Skipping malformed account transaction {raw.get('txHash')}: {e}")
        return transactions

    @staticmethod
    def filter_memo(transactions: List[NormalizedTransaction], memo: str) -> List[NormalizedTransaction]:
        """Keep transactions whose trimmed memo exactly equals memo (case-sensitive)"""
        if not memo:
            return []
        memo = memo.strip()
        return [tx for tx in transactions if (tx.memo or '').strip() == memo]
