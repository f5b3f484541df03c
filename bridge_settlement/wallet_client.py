"""
Wallet Chain Client

JSON-RPC client for the WAGERR wallet daemon.

Features:
- One HTTP round-trip per call (basic auth, per-call timeout)
- Typed error results instead of raised faults for RPC and network errors
- Transparent wallet unlock with a bounded retry loop
- Serialized wallet open (one wallet session at a time)
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from .config import WagerrConfig
from .errors import PayoutError, TransientNetworkError, WalletStateError


@dataclass
class RpcError:
    """Error returned by the wallet or the transport"""
    code: int
    message: str
    kind: str = 'rpc'  # 'rpc', 'network' or 'wallet_state'


@dataclass
class RpcResponse:
    """Outcome of a single RPC request"""
    method: str
    params: List[Any]
    result: Any = None
    error: Optional[RpcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WalletChainClient:
    """
    WAGERR wallet JSON-RPC client

    Every public call is a single RPC round-trip, except when the wallet
    reports it is locked: the client then opens the wallet and retries the
    original call, at most MAX_UNLOCK_RETRIES times.
    """

    WALLET_LOCKED_CODE = -13
    WALLET_LOCKED_MESSAGE = 'Error: Please enter the wallet passphrase with walletpassphrase first.'
    MAX_UNLOCK_RETRIES = 3

    def __init__(
        self,
        url: str,
        username: str = '',
        password: str = '',
        wallet_passphrase: Optional[str] = None,
        unlock_seconds: int = 60,
        account: str = '0',
        max_transactions: int = 1000,
        timeout_seconds: float = 30.0
    ):
        """
        Initialize wallet client

        Args:
            url: Wallet RPC url (http://host:port)
            username: RPC username
            password: RPC password
            wallet_passphrase: Passphrase used to unlock the wallet (None disables unlocking)
            unlock_seconds: How long walletpassphrase keeps the wallet open
            account: Wallet account label used for addresses, history and sends
            max_transactions: Number of history entries requested per listtransactions
            timeout_seconds: Timeout of each HTTP call
        """
        self.url = url
        self.headers = {'Authorization': aiohttp.encode_basic_auth(username, password)}
        self.wallet_passphrase = wallet_passphrase
        self.unlock_seconds = unlock_seconds
        self.account = account
        self.max_transactions = max_transactions
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        self._session: Optional[aiohttp.ClientSession] = None
        self._wallet_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: WagerrConfig) -> 'WalletChainClient':
        return cls(
            url=config.rpc_url,
            username=config.username,
            password=config.password,
            wallet_passphrase=config.wallet_passphrase,
            unlock_seconds=config.unlock_seconds,
            account=config.account,
            max_transactions=config.max_transactions,
            timeout_seconds=config.timeout_seconds,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _post(self, payload: Dict) -> Dict:
        """
        POST a JSON-RPC payload

        The daemon answers RPC errors with a non-200 status and a JSON body,
        so the body is parsed regardless of status.

        Returns:
            Decoded response body
        """
        session = await self._get_session()
        async with session.post(self.url, json=payload, headers=self.headers) as resp:
            text = await resp.text()
            try:
                return json.loads(text)
            except ValueError:
                return {
                    'result': None,
                    'error': {'code': resp.status, 'message': text.strip() or resp.reason or 'Invalid response'},
                }

    async def _call(self, method: str, params: List[Any]) -> RpcResponse:
        """Single RPC round-trip; never raises for RPC or network failures"""
        payload = {
            'jsonrpc': '2.0',
            'id': '0',
            'method': method,
            'params': params,
        }

        try:
            data = await self._post(payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = str(e) or e.__class__.__name__
            return RpcResponse(method, params, error=RpcError(-1, message, kind='network'))

        error = data.get('error') if isinstance(data, dict) else None
        if error:
            if not isinstance(error, dict):
                error = {'code': -1, 'message': str(error)}
            return RpcResponse(
                method,
                params,
                error=RpcError(int(error.get('code', -1)), str(error.get('message', ''))),
            )

        return RpcResponse(method, params, result=data.get('result') if isinstance(data, dict) else None)

    def _is_wallet_locked(self, error: Optional[RpcError]) -> bool:
        return (
            error is not None
            and error.code == self.WALLET_LOCKED_CODE
            and error.message == self.WALLET_LOCKED_MESSAGE
        )

    async def request(self, method: str, params: Optional[List[Any]] = None) -> RpcResponse:
        """
        Call an RPC method, opening the wallet if it is locked

        Args:
            method: RPC method
            params: RPC params

        Returns:
            RpcResponse with either result or error
        """
        params = list(params or [])
        response = await self._call(method, params)

        retries = 0
        while self.wallet_passphrase and self._is_wallet_locked(response.error):
            if retries >= self.MAX_UNLOCK_RETRIES:
                logger.error(f"✗ Wallet still locked after {retries} unlock attempts ({method})")
                return RpcResponse(
                    method,
                    params,
                    error=RpcError(response.error.code, response.error.message, kind='wallet_state'),
                )

            retries += 1
            try:
                await self.open_wallet()
            except WalletStateError as e:
                logger.warning(f"Wallet unlock attempt {retries}/{self.MAX_UNLOCK_RETRIES} failed: {e}")
                response = RpcResponse(
                    method,
                    params,
                    error=RpcError(self.WALLET_LOCKED_CODE, self.WALLET_LOCKED_MESSAGE),
                )
                continue

            response = await self._call(method, params)

        return response

    async def open_wallet(self):
        """
        Open the wallet

        This locks any open wallet session first, then unlocks with the
        configured passphrase.

        Raises:
            WalletStateError: If unlocking failed
        """
        if not self.wallet_passphrase:
            return

        async with self._wallet_lock:
            await self._call('walletlock', [])

            data = await self._call('walletpassphrase', [self.wallet_passphrase, self.unlock_seconds])
            if data.error:
                raise WalletStateError(data.error.message)

            logger.debug("✓ Wallet unlocked")

    async def create_account(self) -> Optional[Dict[str, str]]:
        """
        Create a new deposit address

        Returns:
            {'address', 'address_index'} or None if the wallet failed
        """
        data = await self.request('getnewaddress', [self.account])
        if data.error:
            logger.error(f"[Wagerr Wallet] Failed to create account: {data.error}")
            return None

        address = data.result
        # The wallet has no sub-address index; the address is the index.
        return {'address': address, 'address_index': address}

    async def get_incoming_transactions(self, address_index: str, count: Optional[int] = None) -> List[Dict]:
        """
        Get all incoming transactions sent to the given address

        Args:
            address_index: Deposit address
            count: History depth (defaults to max_transactions)

        Returns:
            Raw wallet transactions (empty on error)
        """
        data = await self.request('listtransactions', [self.account, count or self.max_transactions])
        if data.error:
            logger.error(f"[Wagerr Wallet] Failed to get transactions: {data.error}")
            return []

        return [
            tx for tx in (data.result or [])
            if tx.get('category') == 'receive' and tx.get('address') == address_index
        ]

    async def validate_address(self, address: str) -> bool:
        data = await self.request('validateaddress', [address])
        if data.error:
            logger.error(f"[Wagerr Wallet] Failed to validate address: {data.error}")
            return False

        return bool((data.result or {}).get('isvalid'))

    async def get_balance(self) -> Optional[float]:
        data = await self.request('getbalance', [self.account])
        if data.error:
            logger.error(f"[Wagerr Wallet] Failed to get balance: {data.error}")
            return None

        return data.result

    async def multi_send(self, destinations: Dict[str, float]) -> List[str]:
        """
        Send to multiple addresses in one transaction

        Args:
            destinations: Address -> amount in display units

        Returns:
            Transaction hashes

        Raises:
            TransientNetworkError: Wallet unreachable
            WalletStateError: Wallet could not be unlocked
            PayoutError: Wallet rejected the send
        """
        data = await self.request('sendmany', [self.account, destinations])

        if data.error:
            message = f"[Wagerr Wallet] Failed to send transactions - {data.error.message}"
            if data.error.kind == 'network':
                raise TransientNetworkError(message)
            if data.error.kind == 'wallet_state':
                raise WalletStateError(message)
            raise PayoutError(message)

        if not data.result:
            raise PayoutError("[Wagerr Wallet] Failed to send transactions - No result found")

        logger.info(f"✓ sendmany to {len(destinations)} addresses: {data.result}")
        return [data.result]

    async def close(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
