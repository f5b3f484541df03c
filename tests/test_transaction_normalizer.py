"""Tests for transaction normalization and the finality gates"""

import pytest

from bridge_settlement.constants import ChainType
from bridge_settlement.models import NormalizedTransaction
from bridge_settlement.transaction_normalizer import TransactionNormalizer, parse_smallest_unit, parse_timestamp

from tests.conftest import BRIDGE_ADDRESS
from tests.fakes import account_tx, wallet_tx


class TestParseTimestamp:

    def test_iso_string_is_floored(self):
        assert parse_timestamp('2023-11-14T22:13:20.999Z') == 1_700_000_000

    def test_offset_and_naive_strings(self):
        assert parse_timestamp('2023-11-14T22:13:20+00:00') == 1_700_000_000
        assert parse_timestamp('2023-11-14T22:13:20') == 1_700_000_000

    def test_numeric_seconds_and_milliseconds(self):
        assert parse_timestamp(1_700_000_000) == 1_700_000_000
        assert parse_timestamp(1_700_000_000_500) == 1_700_000_000


class TestParseSmallestUnit:

    @pytest.mark.parametrize('value', [100, '100', '100.00000000'])
    def test_whole_amounts(self, value):
        assert parse_smallest_unit(value) == 100

    @pytest.mark.parametrize('value', ['1.5', 'NaN', 'Infinity'])
    def test_fractional_or_non_finite_rejected(self, value):
        with pytest.raises(ValueError):
            parse_smallest_unit(value)


class TestWalletTransactions:

    @pytest.mark.asyncio
    async def test_confirmation_gate(self, normalizer, wallet_client):
        wallet_client.transactions = {
            'Wdep1': [
                wallet_tx('t1', 'Wdep1', 0.5, confirmations=6),
                wallet_tx('t2', 'Wdep1', 0.5, confirmations=5),
            ]
        }

        transactions = await normalizer.get_incoming_transactions(
            {'address': 'Wdep1', 'address_index': 'Wdep1'}, ChainType.WAGERR
        )

        assert [tx.hash for tx in transactions] == ['t1']

    @pytest.mark.asyncio
    async def test_maps_fields(self, normalizer, wallet_client):
        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 12.345678901, confirmations=3, time=1_600_000_000)]}

        transactions = await normalizer.get_incoming_wallet_transactions('Wdep1')

        assert transactions == [
            NormalizedTransaction(
                hash='t1',
                amount=12_345_678_901,
                timestamp=1_600_000_000,
                confirmations=3,
                address='Wdep1',
            )
        ]

    @pytest.mark.asyncio
    async def test_amount_rounds_half_up(self, normalizer, wallet_client):
        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', '0.0000000005')]}

        transactions = await normalizer.get_incoming_wallet_transactions('Wdep1')

        assert transactions[0].amount == 1

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, normalizer, wallet_client):
        wallet_client.transactions = {'Wdep1': [{'address': 'Wdep1', 'amount': 1}, wallet_tx('t2', 'Wdep1', 1)]}

        transactions = await normalizer.get_incoming_wallet_transactions('Wdep1')

        assert [tx.hash for tx in transactions] == ['t2']

    @pytest.mark.asyncio
    async def test_zero_threshold_accepts_unconfirmed(self, wallet_client, account_client):
        normalizer = TransactionNormalizer(wallet_client, account_client, BRIDGE_ADDRESS, min_confirmations=0)
        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 1, confirmations=0)]}

        transactions = await normalizer.get_incoming_transactions({'address_index': 'Wdep1'}, ChainType.WAGERR)

        assert len(transactions) == 1


class TestAccountTransactions:

    @pytest.mark.asyncio
    async def test_memo_gate(self, normalizer, account_client):
        memo = 'm' * 64
        account_client.transactions = [
            account_tx('b1', 100, memo),
            account_tx('b2', 200, f" {memo}\n"),
            account_tx('b3', 300, memo.upper()),
            account_tx('b4', 400, ''),
        ]

        transactions = await normalizer.get_incoming_transactions({'memo': memo}, ChainType.BNB)

        assert [tx.hash for tx in transactions] == ['b1', 'b2']
        assert account_client.history_calls == [(BRIDGE_ADDRESS, None)]

    @pytest.mark.asyncio
    async def test_maps_fields(self, normalizer, account_client):
        account_client.transactions = [account_tx('b1', 150, ' memo ', timestamp='2023-11-14T22:13:20.500Z')]

        transactions = await normalizer.get_incoming_account_transactions(since_ms=123)

        assert transactions == [NormalizedTransaction(hash='b1', amount=150, timestamp=1_700_000_000, memo='memo')]
        assert account_client.history_calls == [(BRIDGE_ADDRESS, 123)]

    def test_filter_memo_empty_memo_matches_nothing(self):
        transactions = [NormalizedTransaction(hash='b1', amount=1, timestamp=0, memo='')]
        assert TransactionNormalizer.filter_memo(transactions, '') == []

    @pytest.mark.asyncio
    async def test_decimal_string_value(self, normalizer, account_client):
        account_client.transactions = [
            account_tx('b1', '150.00000000', 'memo'),
            account_tx('b2', '0.5', 'memo'),
            account_tx('b3', 'abc', 'memo'),
        ]

        transactions = await normalizer.get_incoming_account_transactions()

        assert [(tx.hash, tx.amount) for tx in transactions] == [('b1', 150)]
