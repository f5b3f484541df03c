"""Shared fixtures: temporary ledger, fake clients, engines wired to fakes"""

from decimal import Decimal

import pytest

from bridge_settlement.config import FeeSchedule
from bridge_settlement.constants import ChainType
from bridge_settlement.ledger import SwapLedger
from bridge_settlement.settlement_engine import SettlementEngine
from bridge_settlement.sweep_engine import SweepEngine
from bridge_settlement.transaction_normalizer import TransactionNormalizer

from tests.fakes import FakeAccountClient, FakePriceOracle, FakeWalletClient

BRIDGE_ADDRESS = 'bnb1bridgeaddress'


@pytest.fixture
def ledger(tmp_path):
    db = SwapLedger(str(tmp_path / "ledger.db"))
    yield db
    db.close()


@pytest.fixture
def wallet_client():
    return FakeWalletClient()


@pytest.fixture
def account_client():
    return FakeAccountClient()


@pytest.fixture
def price_oracle():
    return FakePriceOracle(Decimal('0.5'))


@pytest.fixture
def fees():
    return FeeSchedule({ChainType.WAGERR: 0, ChainType.BNB: 0})


@pytest.fixture
def normalizer(wallet_client, account_client):
    return TransactionNormalizer(wallet_client, account_client, BRIDGE_ADDRESS, min_confirmations=6)


@pytest.fixture
def sweep_engine(ledger, normalizer):
    return SweepEngine(ledger, normalizer)


@pytest.fixture
def settlement_engine(ledger, wallet_client, account_client, price_oracle, fees):
    return SettlementEngine(
        ledger,
        wallet_client,
        account_client,
        price_oracle,
        fees,
        symbol='B-WAGERR',
        signer_key='bridge-key',
    )
