"""
Account Chain Client

REST client for the BNB account/memo chain.

Features:
- Paged incoming transaction history for the bridge receiving address
- Bech32 address validation (bnb / tbnb)
- Multi-send with up-front output validation, delegated signing and broadcast
"""

import asyncio
from typing import Dict, List, Optional

import aiohttp
from loguru import logger

from .config import BinanceConfig
from .errors import PayoutError, TransientNetworkError, ValidationError

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

NETWORK_PREFIXES = {
    'mainnet': 'bnb',
    'testnet': 'tbnb',
}


def _bech32_polymod(values: List[int]) -> int:
    generator = [0x3b6a57b2, 0x26508e6d, 0x1ea119fa, 0x3d4233dd, 0x2a1462b3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1ffffff) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def _bech32_hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data: List[int], frombits: int, tobits: int, pad: bool = False) -> Optional[List[int]]:
    """Regroup words between bit widths; None on invalid padding"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    for value in data:
        acc = (acc << frombits) | value
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None
    return ret


def bech32_encode(hrp: str, payload: bytes) -> str:
    """Encode bytes as a bech32 address"""
    data = _convertbits(list(payload), 8, 5, pad=True)
    values = _bech32_hrp_expand(hrp) + data
    polymod = _bech32_polymod(values + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + '1' + ''.join(BECH32_CHARSET[d] for d in data + checksum)


def bech32_decode(address: str):
    """
    Decode a bech32 string

    Returns:
        (hrp, payload bytes) or (None, None) if the string is not valid bech32
    """
    if not address or address.lower() != address and address.upper() != address:
        return None, None
    address = address.lower()

    pos = address.rfind('1')
    if pos < 1 or pos + 7 > len(address) or len(address) > 90:
        return None, None
    if any(c not in BECH32_CHARSET for c in address[pos + 1:]):
        return None, None

    hrp = address[:pos]
    data = [BECH32_CHARSET.find(c) for c in address[pos + 1:]]
    if _bech32_polymod(_bech32_hrp_expand(hrp) + data) != 1:
        return None, None

    payload = _convertbits(data[:-6], 5, 8)
    if payload is None:
        return None, None
    return hrp, bytes(payload)


class RemoteSigner:
    """
    Signs account-chain transactions through an external signing service

    The service holds the keys; only the key identifier and the unsigned
    transfer are sent.
    """

    def __init__(self, url: str, timeout_seconds: float = 30.0):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def sign_multi_send(self, key: str, outputs: List[Dict], memo: str) -> str:
        """
        Request a signed multi-send

        Returns:
            Hex encoded signed transaction

        Raises:
            TransientNetworkError: Signer unreachable
            PayoutError: Signer refused
        """
        payload = {'key': key, 'outputs': outputs, 'memo': memo}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=payload) as resp:
                    data = await resp.json(content_type=None)
                    if resp.status != 200 or not isinstance(data, dict) or not data.get('tx'):
                        raise PayoutError(f"Signer refused multi-send: {data}")
                    return data['tx']
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"Signer unreachable: {e}") from e


class AccountChainClient:
    """
    BNB account chain client

    Incoming deposits are identified by memo on a single bridge receiving
    address; history is read from the chain's public API.
    """

    def __init__(
        self,
        api: str,
        symbol: str,
        network: str = 'mainnet',
        signer=None,
        page_size: int = 500,
        timeout_seconds: float = 30.0
    ):
        """
        Initialize account chain client

        Args:
            api: API base url
            symbol: Bridged token symbol (denom)
            network: 'mainnet' or 'testnet' (selects the address prefix)
            signer: Object with async sign_multi_send(key, outputs, memo) -> hex
            page_size: History page size
            timeout_seconds: Timeout of each HTTP call
        """
        if network not in NETWORK_PREFIXES:
            raise ValidationError(f"Unknown account chain network: {network}")

        self.api = api.rstrip('/')
        self.symbol = symbol
        self.network = network
        self.prefix = NETWORK_PREFIXES[network]
        self.signer = signer
        self.page_size = page_size
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: BinanceConfig) -> 'AccountChainClient':
        signer = RemoteSigner(config.signer_url, config.timeout_seconds) if config.signer_url else None
        return cls(
            api=config.api,
            symbol=config.symbol,
            network=config.network,
            signer=signer,
            page_size=config.page_size,
            timeout_seconds=config.timeout_seconds,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _get(self, path: str, params: Dict) -> Dict:
        session = await self._get_session()
        async with session.get(f"{self.api}{path}", params=params) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def _post(self, path: str, data: str, params: Optional[Dict] = None):
        session = await self._get_session()
        headers = {'Content-Type': 'text/plain'}
        async with session.post(f"{self.api}{path}", data=data, params=params, headers=headers) as resp:
            body = await resp.json(content_type=None)
            return resp.status, body

    async def get_incoming_transactions(self, address: str, since_ms: Optional[int] = None) -> List[Dict]:
        """
        Get token transfers received by an address

        Args:
            address: Receiving address
            since_ms: Optional lower bound (epoch milliseconds)

        Returns:
            Raw transactions (empty on error)
        """
        transactions: List[Dict] = []
        offset = 0

        while True:
            params = {
                'address': address,
                'side': 'RECEIVE',
                'txAsset': self.symbol,
                'limit': self.page_size,
                'offset': offset,
            }
            if since_ms is not None:
                params['startTime'] = int(since_ms)

            try:
                data = await self._get('/api/v1/transactions', params)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.error(f"[BNB] Failed to get transactions for {address}: {e}")
                return []

            page = (data or {}).get('tx') or []
            transactions.extend(page)

            total = (data or {}).get('total', 0)
            offset += len(page)
            if not page or len(page) < self.page_size or offset >= total:
                break

        return transactions

    def validate_address(self, address: str) -> bool:
        """Check checksum, prefix and payload length of an address"""
        if not isinstance(address, str):
            return False
        hrp, payload = bech32_decode(address)
        return hrp == self.prefix and payload is not None and len(payload) == 20

    def _validate_outputs(self, outputs: List[Dict]):
        if not outputs:
            raise ValidationError("No outputs to send")

        for output in outputs:
            to = output.get('to')
            if not self.validate_address(to):
                raise ValidationError(f"Invalid output address: {to}")

            coins = output.get('coins') or []
            if not coins:
                raise ValidationError(f"Output to {to} has no coins")

            for coin in coins:
                if coin.get('denom') != self.symbol:
                    raise ValidationError(f"Invalid denom for {to}: {coin.get('denom')}")
                amount = coin.get('amount')
                if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                    raise ValidationError(f"Invalid amount for {to}: {amount}")

    async def multi_send(self, key: str, outputs: List[Dict], note: str = '') -> List[str]:
        """
        Send tokens to multiple addresses in one transaction

        Args:
            key: Signing key identifier
            outputs: [{'to': address, 'coins': [{'denom', 'amount'}]}]
            note: Transaction memo

        Returns:
            Transaction hashes

        Raises:
            ValidationError: Any output invalid (nothing sent)
            TransientNetworkError: Chain or signer unreachable
            PayoutError: Broadcast rejected
        """
        self._validate_outputs(outputs)

        if self.signer is None:
            raise PayoutError("[BNB] No signer configured")

        signed = await self.signer.sign_multi_send(key, outputs, note)

        try:
            status, body = await self._post('/api/v1/broadcast', signed, params={'sync': 'true'})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"[BNB] Broadcast failed: {e}") from e
        except ValueError as e:
            raise PayoutError(f"[BNB] Invalid broadcast response: {e}") from e

        if status != 200 or not isinstance(body, list) or not body:
            raise PayoutError(f"[BNB] Broadcast rejected ({status}): {body}")

        rejected = [result for result in body if not result.get('ok')]
        if rejected:
            raise PayoutError(f"[BNB] Broadcast rejected: {rejected[0].get('log')}")

        hashes = [result['hash'] for result in body]
        logger.info(f"✓ Multi-send to {len(outputs)} addresses: {','.join(hashes)}")
        return hashes

    async def close(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
