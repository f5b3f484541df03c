"""
Swap Service

Operations behind the public swap API:
- request_swap: get or create the deposit identity for a payout address
- finalize_swap: record a client's new deposits right away
- get_swaps: list a client's swaps
- get_unconfirmed_transactions: wallet deposits still waiting on confirmations
- get_info: fees and confirmation thresholds
"""

import secrets
import string
from typing import Dict, List

from loguru import logger

from .config import FeeSchedule
from .constants import ChainType, SwapType, account_type_for, address_type_for
from .errors import AccountCreationFailed, AccountNotFound, ValidationError
from .models import ClientAccount, Swap

MEMO_ALPHABET = string.ascii_letters + string.digits
MEMO_LENGTH = 64


def generate_memo(length: int = MEMO_LENGTH) -> str:
    return ''.join(secrets.choice(MEMO_ALPHABET) for _ in range(length))


class SwapService:
    """Client-facing swap operations"""

    def __init__(self, ledger, wallet_client, account_client, normalizer, fees: FeeSchedule):
        """
        Initialize swap service

        Args:
            ledger: SwapLedger
            wallet_client: WalletChainClient
            account_client: AccountChainClient
            normalizer: TransactionNormalizer
            fees: Withdrawal fee schedule
        """
        self.ledger = ledger
        self.wallet_client = wallet_client
        self.account_client = account_client
        self.normalizer = normalizer
        self.fees = fees

    def _format_client_account(self, client_account: ClientAccount) -> Dict:
        if client_account.account_type is ChainType.WAGERR:
            deposit_address = client_account.deposit_address
        else:
            deposit_address = self.normalizer.deposit_address

        result = {
            'uuid': client_account.uuid,
            'type': client_account.account_type.value,
            'deposit_address': deposit_address,
        }
        if client_account.account_type is ChainType.BNB:
            result['memo'] = client_account.memo
        return result

    async def _validate_address(self, address: str, address_type: ChainType) -> bool:
        if not address or not isinstance(address, str):
            return False
        if address_type is ChainType.WAGERR:
            return await self.wallet_client.validate_address(address)
        return self.account_client.validate_address(address)

    def _get_client_account(self, account_uuid: str) -> ClientAccount:
        if not account_uuid:
            raise ValidationError("uuid is required")
        client_account = self.ledger.get_client_account_for_uuid(account_uuid)
        if client_account is None:
            raise AccountNotFound(f"Unable to find swap details for {account_uuid}")
        return client_account

    async def request_swap(self, swap_type: SwapType, address: str) -> Dict:
        """
        Get deposit instructions for a swap

        The address is the user's payout address on the destination chain.
        Repeated requests for the same address return the same deposit identity.

        Returns:
            {'uuid', 'type', 'deposit_address', 'memo'?}

        Raises:
            ValidationError: Unknown swap type or invalid address
            AccountCreationFailed: Wallet could not create a deposit address
        """
        try:
            swap_type = SwapType(swap_type)
        except ValueError as e:
            raise ValidationError('Invalid swap type') from e

        address_type = address_type_for(swap_type)
        if not await self._validate_address(address, address_type):
            raise ValidationError(f"Invalid {address_type.value} address: {address}")

        existing = self.ledger.get_client_account(address, address_type)
        if existing:
            return self._format_client_account(existing)

        account_type = account_type_for(swap_type)
        if account_type is ChainType.BNB:
            payload = {'memo': generate_memo()}
        else:
            payload = await self.wallet_client.create_account()

        if not payload:
            logger.error(f"✗ Failed to create {account_type.value} account for {address}")
            raise AccountCreationFailed(f"Failed to create {account_type.value} account")

        client_account = self.ledger.insert_client_account(address, address_type, payload)
        if client_account is None:
            raise AccountCreationFailed(f"Invalid {account_type.value} account payload")

        return self._format_client_account(client_account)

    async def finalize_swap(self, account_uuid: str) -> List[Swap]:
        """
        Record a client's unseen deposits

        Returns:
            Newly recorded swaps (empty if there are none)
        """
        client_account = self._get_client_account(account_uuid)

        swaps = self.ledger.get_swaps_for_client_account(account_uuid)
        transactions = await self.normalizer.get_incoming_transactions(
            client_account.account, client_account.account_type
        )

        if not transactions:
            logger.info(f"No deposit found for {account_uuid}")
            return []

        known = {swap.deposit_transaction_hash for swap in swaps}
        new_transactions = [tx for tx in transactions if tx.hash not in known]
        if not new_transactions:
            logger.info(f"No new deposits for {account_uuid}")
            return []

        return self.ledger.insert_swaps(new_transactions, client_account)

    def get_swaps(self, account_uuid: str) -> List[Dict]:
        """Swaps of a client account with split transfer hashes"""
        self._get_client_account(account_uuid)

        return [
            {
                'uuid': swap.uuid,
                'type': swap.type.value,
                'amount': swap.amount,
                'deposit_transaction_hash': swap.deposit_transaction_hash,
                'transfer_transaction_hashes': swap.transfer_transaction_hashes,
                'created': swap.created.isoformat() if swap.created else None,
            }
            for swap in self.ledger.get_swaps_for_client_account(account_uuid)
        ]

    async def get_unconfirmed_transactions(self, account_uuid: str) -> List[Dict]:
        """Wallet deposits below the confirmation threshold"""
        client_account = self._get_client_account(account_uuid)
        if client_account.account_type is not ChainType.WAGERR:
            return []

        transactions = await self.normalizer.get_incoming_wallet_transactions(
            client_account.account['address_index']
        )
        return [
            {'hash': tx.hash, 'amount': tx.amount, 'created': tx.timestamp, 'confirmations': tx.confirmations}
            for tx in transactions
            if (tx.confirmations or 0) < self.normalizer.min_confirmations
        ]

    def get_info(self) -> Dict:
        return {
            'fees': {
                ChainType.WAGERR.value: self.fees.get(ChainType.WAGERR),
                ChainType.BNB.value: self.fees.get(ChainType.BNB),
            },
            'min_wagerr_confirmations': self.normalizer.min_confirmations,
            'min_bnb_confirmations': 1,
        }
