"""Tests for the wallet JSON-RPC client (transport monkeypatched)"""

import asyncio
import warnings

import aiohttp
import pytest

from bridge_settlement.errors import PayoutError, TransientNetworkError, WalletStateError
from bridge_settlement.wallet_client import WalletChainClient

LOCKED = {
    'result': None,
    'error': {'code': -13, 'message': WalletChainClient.WALLET_LOCKED_MESSAGE},
}


class ScriptedTransport:
    """Replays responses per RPC method and records every call"""

    def __init__(self, responses):
        self.responses = {method: list(replies) for method, replies in responses.items()}
        self.calls = []

    async def __call__(self, payload):
        self.calls.append((payload['method'], payload['params']))
        replies = self.responses.get(payload['method'], [])
        reply = replies.pop(0) if len(replies) > 1 else (replies[0] if replies else {'result': None, 'error': None})
        if isinstance(reply, Exception):
            raise reply
        return reply

    def methods(self):
        return [method for method, _ in self.calls]


def make_client(monkeypatch, responses, passphrase='secret'):
    client = WalletChainClient('http://localhost:55003', 'user', 'pass', wallet_passphrase=passphrase)
    transport = ScriptedTransport(responses)
    monkeypatch.setattr(client, '_post', transport)
    return client, transport


class TestConstruction:

    def test_basic_auth_header_without_deprecation_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error', DeprecationWarning)
            client = WalletChainClient('http://localhost:55003', 'user', 'pass')

        # base64 of "user:pass"
        assert client.headers == {'Authorization': 'Basic dXNlcjpwYXNz'}


class TestRequest:

    @pytest.mark.asyncio
    async def test_result(self, monkeypatch):
        client, transport = make_client(monkeypatch, {'getbalance': [{'result': 12.5, 'error': None}]})

        response = await client.request('getbalance', ['0'])

        assert response.ok
        assert response.result == 12.5
        assert transport.calls == [('getbalance', ['0'])]

    @pytest.mark.asyncio
    async def test_rpc_error_is_returned(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'getbalance': [{'result': None, 'error': {'code': -5, 'message': 'bad'}}]})

        response = await client.request('getbalance')

        assert not response.ok
        assert response.error.code == -5
        assert response.error.kind == 'rpc'

    @pytest.mark.asyncio
    async def test_network_error_is_returned(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'getbalance': [aiohttp.ClientConnectionError('refused')]})

        response = await client.request('getbalance')

        assert response.error.kind == 'network'
        assert response.error.code == -1

    @pytest.mark.asyncio
    async def test_timeout_is_a_network_error(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'getbalance': [asyncio.TimeoutError()]})

        response = await client.request('getbalance')

        assert response.error.kind == 'network'
        assert response.error.message == 'TimeoutError'


class TestWalletUnlock:

    @pytest.mark.asyncio
    async def test_unlocks_and_retries(self, monkeypatch):
        client, transport = make_client(monkeypatch, {
            'getnewaddress': [LOCKED, {'result': 'Wnew', 'error': None}],
            'walletlock': [{'result': None, 'error': None}],
            'walletpassphrase': [{'result': None, 'error': None}],
        })

        account = await client.create_account()

        assert account == {'address': 'Wnew', 'address_index': 'Wnew'}
        assert transport.methods() == ['getnewaddress', 'walletlock', 'walletpassphrase', 'getnewaddress']
        assert transport.calls[2] == ('walletpassphrase', ['secret', 60])

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, monkeypatch):
        client, transport = make_client(monkeypatch, {
            'sendmany': [LOCKED],
            'walletlock': [{'result': None, 'error': None}],
            'walletpassphrase': [{'result': None, 'error': None}],
        })

        with pytest.raises(WalletStateError):
            await client.multi_send({'Wa': 1.0})

        assert transport.methods().count('sendmany') == 1 + WalletChainClient.MAX_UNLOCK_RETRIES
        assert transport.methods().count('walletpassphrase') == WalletChainClient.MAX_UNLOCK_RETRIES

    @pytest.mark.asyncio
    async def test_failed_unlock_counts_as_attempt(self, monkeypatch):
        client, transport = make_client(monkeypatch, {
            'getbalance': [LOCKED],
            'walletlock': [{'result': None, 'error': None}],
            'walletpassphrase': [{'result': None, 'error': {'code': -14, 'message': 'wrong passphrase'}}],
        })

        response = await client.request('getbalance')

        assert response.error.kind == 'wallet_state'
        assert transport.methods().count('walletpassphrase') == WalletChainClient.MAX_UNLOCK_RETRIES
        assert transport.methods().count('getbalance') == 1

    @pytest.mark.asyncio
    async def test_no_passphrase_no_unlock(self, monkeypatch):
        client, transport = make_client(monkeypatch, {'getbalance': [LOCKED]}, passphrase=None)

        response = await client.request('getbalance')

        assert response.error.code == -13
        assert transport.methods() == ['getbalance']

    @pytest.mark.asyncio
    async def test_other_error_codes_do_not_unlock(self, monkeypatch):
        client, transport = make_client(monkeypatch, {
            'getbalance': [{'result': None, 'error': {'code': -13, 'message': 'something else'}}],
        })

        await client.request('getbalance')

        assert transport.methods() == ['getbalance']


class TestOperations:

    @pytest.mark.asyncio
    async def test_incoming_transactions_filtered(self, monkeypatch):
        client, transport = make_client(monkeypatch, {'listtransactions': [{'result': [
            {'txid': 't1', 'category': 'receive', 'address': 'Wdep1', 'amount': 1},
            {'txid': 't2', 'category': 'send', 'address': 'Wdep1', 'amount': -1},
            {'txid': 't3', 'category': 'receive', 'address': 'Wother', 'amount': 1},
        ], 'error': None}]})

        transactions = await client.get_incoming_transactions('Wdep1')

        assert [tx['txid'] for tx in transactions] == ['t1']
        assert transport.calls == [('listtransactions', ['0', 1000])]

    @pytest.mark.asyncio
    async def test_incoming_transactions_error_is_empty(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'listtransactions': [aiohttp.ClientConnectionError()]})
        assert await client.get_incoming_transactions('Wdep1') == []

    @pytest.mark.asyncio
    async def test_create_account_failure(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'getnewaddress': [{'result': None, 'error': {'code': -1, 'message': 'x'}}]})
        assert await client.create_account() is None

    @pytest.mark.asyncio
    async def test_validate_address(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'validateaddress': [
            {'result': {'isvalid': True}, 'error': None},
            {'result': {'isvalid': False}, 'error': None},
        ]})

        assert await client.validate_address('Wgood') is True
        assert await client.validate_address('bad') is False

    @pytest.mark.asyncio
    async def test_multi_send(self, monkeypatch):
        client, transport = make_client(monkeypatch, {'sendmany': [{'result': 'txid1', 'error': None}]})

        assert await client.multi_send({'Wa': 1.5, 'Wb': 2.0}) == ['txid1']
        assert transport.calls == [('sendmany', ['0', {'Wa': 1.5, 'Wb': 2.0}])]

    @pytest.mark.asyncio
    async def test_multi_send_rejected(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'sendmany': [{'result': None, 'error': {'code': -6, 'message': 'Insufficient funds'}}]})

        with pytest.raises(PayoutError, match='Insufficient funds'):
            await client.multi_send({'Wa': 1.0})

    @pytest.mark.asyncio
    async def test_multi_send_network_failure(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'sendmany': [aiohttp.ClientConnectionError('down')]})

        with pytest.raises(TransientNetworkError):
            await client.multi_send({'Wa': 1.0})

    @pytest.mark.asyncio
    async def test_multi_send_empty_result(self, monkeypatch):
        client, _ = make_client(monkeypatch, {'sendmany': [{'result': None, 'error': None}]})

        with pytest.raises(PayoutError):
            await client.multi_send({'Wa': 1.0})
