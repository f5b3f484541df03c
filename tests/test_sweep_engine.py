"""Tests for the sweep engine"""

import pytest

from bridge_settlement.constants import ChainType, SwapType
from bridge_settlement.models import NormalizedTransaction

from tests.fakes import account_tx, wallet_tx

MEMO_A = 'a' * 64
MEMO_B = 'b' * 64


@pytest.fixture
def wagerr_accounts(ledger):
    return [
        ledger.insert_client_account('bnb1alice', ChainType.BNB, {'address': 'Wdep1', 'address_index': 'Wdep1'}),
        ledger.insert_client_account('bnb1bob', ChainType.BNB, {'address': 'Wdep2', 'address_index': 'Wdep2'}),
    ]


@pytest.fixture
def bnb_accounts(ledger):
    return [
        ledger.insert_client_account('Walice', ChainType.WAGERR, {'memo': MEMO_A}),
        ledger.insert_client_account('Wbob', ChainType.WAGERR, {'memo': MEMO_B}),
    ]


class TestWagerrSweep:

    @pytest.mark.asyncio
    async def test_records_confirmed_deposits(self, ledger, sweep_engine, wallet_client, wagerr_accounts):
        wallet_client.transactions = {
            'Wdep1': [wallet_tx('t1', 'Wdep1', 1.5), wallet_tx('t2', 'Wdep1', 2, confirmations=1)],
            'Wdep2': [wallet_tx('t3', 'Wdep2', 3)],
        }

        inserted = await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR)

        assert inserted == 2
        pending = ledger.get_pending_swaps(SwapType.WAGERR_TO_BWAGERR)
        by_hash = {swap.deposit_transaction_hash: swap for swap in pending}
        assert set(by_hash) == {'t1', 't3'}
        assert by_hash['t1'].amount == 1_500_000_000
        assert by_hash['t1'].address == 'bnb1alice'
        assert by_hash['t3'].address == 'bnb1bob'

    @pytest.mark.asyncio
    async def test_second_run_inserts_nothing(self, ledger, sweep_engine, wallet_client, wagerr_accounts):
        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 1)]}

        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 1
        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 0
        assert len(ledger.get_all_swaps(SwapType.WAGERR_TO_BWAGERR)) == 1

    @pytest.mark.asyncio
    async def test_deposit_confirmed_later_is_picked_up(self, ledger, sweep_engine, wallet_client, wagerr_accounts):
        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 1, confirmations=2)]}
        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 0

        wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 1, confirmations=6)]}
        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 1

    @pytest.mark.asyncio
    async def test_duplicate_hash_in_one_batch_recorded_once(self, ledger, sweep_engine, wallet_client, wagerr_accounts):
        wallet_client.transactions = {
            'Wdep1': [wallet_tx('t1', 'Wdep1', 1)],
            'Wdep2': [wallet_tx('t1', 'Wdep2', 1)],
        }

        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 1

    @pytest.mark.asyncio
    async def test_no_accounts(self, sweep_engine, wallet_client):
        assert await sweep_engine.sweep_pending(SwapType.WAGERR_TO_BWAGERR) == 0
        assert wallet_client.history_calls == []


class TestBnbSweep:

    @pytest.mark.asyncio
    async def test_matches_memo_to_account(self, ledger, sweep_engine, account_client, bnb_accounts):
        account_client.transactions = [
            account_tx('b1', 100, MEMO_A),
            account_tx('b2', 200, f"  {MEMO_B} "),
            account_tx('b3', 300, 'c' * 64),
            account_tx('b4', 400, MEMO_A.upper()),
        ]

        inserted = await sweep_engine.sweep_pending(SwapType.BWAGERR_TO_WAGERR)

        assert inserted == 2
        pending = {swap.deposit_transaction_hash: swap for swap in ledger.get_pending_swaps(SwapType.BWAGERR_TO_WAGERR)}
        assert set(pending) == {'b1', 'b2'}
        assert pending['b1'].address == 'Walice'
        assert pending['b2'].address == 'Wbob'

    @pytest.mark.asyncio
    async def test_history_fetched_once_per_pass(self, sweep_engine, account_client, bnb_accounts):
        account_client.transactions = [account_tx('b1', 100, MEMO_A)]

        await sweep_engine.sweep_pending(SwapType.BWAGERR_TO_WAGERR)

        assert len(account_client.history_calls) == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, ledger, sweep_engine, account_client, bnb_accounts):
        account_client.transactions = [account_tx('b1', 100, MEMO_A), account_tx('b2', 100, MEMO_B)]

        assert await sweep_engine.sweep_pending(SwapType.BWAGERR_TO_WAGERR) == 2
        assert await sweep_engine.sweep_pending(SwapType.BWAGERR_TO_WAGERR) == 0


@pytest.mark.asyncio
async def test_sweep_all_covers_both_types(sweep_engine, wallet_client, account_client, wagerr_accounts, bnb_accounts):
    wallet_client.transactions = {'Wdep1': [wallet_tx('t1', 'Wdep1', 1)]}
    account_client.transactions = [account_tx('b1', 100, MEMO_A)]

    results = await sweep_engine.sweep_all()

    assert results == {SwapType.WAGERR_TO_BWAGERR: 1, SwapType.BWAGERR_TO_WAGERR: 1}


class TestResolveOwners:

    def test_untagged_deposit_is_dropped(self, sweep_engine, wagerr_accounts):
        tagged = NormalizedTransaction(hash='t1', amount=1, timestamp=0, address='Wdep1')
        untagged = NormalizedTransaction(hash='t2', amount=1, timestamp=0)

        resolved = sweep_engine._resolve_owners([tagged, untagged], wagerr_accounts, ChainType.WAGERR)

        assert [(tx.hash, owner.address) for tx, owner in resolved] == [('t1', 'bnb1alice')]

    def test_unknown_memo_is_dropped(self, sweep_engine, bnb_accounts):
        known = NormalizedTransaction(hash='b1', amount=1, timestamp=0, memo=MEMO_B)
        unknown = NormalizedTransaction(hash='b2', amount=1, timestamp=0, memo='c' * 64)

        resolved = sweep_engine._resolve_owners([known, unknown], bnb_accounts, ChainType.BNB)

        assert [(tx.hash, owner.address) for tx, owner in resolved] == [('b1', 'Wbob')]
