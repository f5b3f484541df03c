"""
Bridge Configuration

Loads bridge_config.yaml into typed sections and overlays secrets from the
environment (a local .env file is read first).

Sections:
- wagerr: wallet RPC, wallet passphrase, confirmations, withdrawal fee
- binance: account-chain API, receiving address, token symbol, fee, signer
- price_oracle: USD price source
- settlement: auto-swap daily limit
- ledger: SQLite path
- logging: level and optional file sink

Fees are written in display units (e.g. 0.1 WAGERR) and converted to
smallest units by FeeSchedule.
"""

import os
from dataclasses import dataclass, field
from decimal import InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .constants import ChainType, to_smallest_unit
from .errors import ValidationError


@dataclass
class WagerrConfig:
    """Wallet chain settings"""
    host: str = 'localhost'
    port: int = 55003
    username: str = ''
    password: str = ''
    timeout_seconds: float = 30.0
    wallet_passphrase: Optional[str] = None
    unlock_seconds: int = 60
    account: str = '0'
    max_transactions: int = 1000
    min_confirmations: int = 6
    withdrawal_fee: float = 0.0

    @property
    def rpc_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class BinanceConfig:
    """Account chain settings"""
    api: str = 'https://dex.binance.org'
    network: str = 'mainnet'
    symbol: str = 'B-WAGERR'
    deposit_address: str = ''
    signer_url: Optional[str] = None
    signer_key: str = ''
    timeout_seconds: float = 30.0
    page_size: int = 500
    withdrawal_fee: float = 0.0


@dataclass
class PriceOracleConfig:
    """USD price source for the wallet-chain asset"""
    source: str = 'coingecko'  # 'coingecko' or 'exchange'
    url: str = 'https://api.coingecko.com/api/v3/simple/price'
    coin_id: str = 'wagerr'
    exchange: str = 'kucoin'
    symbol: str = 'WGR/USDT'
    timeout_seconds: float = 15.0
    cache_ttl_seconds: int = 60


@dataclass
class SettlementConfig:
    """Payout settings"""
    daily_limit_usd: Optional[float] = None
    balance_window_hours: int = 48


@dataclass
class LedgerConfig:
    path: str = 'bridge_ledger.db'


@dataclass
class LoggingConfig:
    level: str = 'INFO'
    file: Optional[str] = None
    rotation: str = '10 MB'


@dataclass
class BridgeConfig:
    """Complete bridge configuration"""
    wagerr: WagerrConfig = field(default_factory=WagerrConfig)
    binance: BinanceConfig = field(default_factory=BinanceConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class FeeSchedule:
    """Per-currency withdrawal fee in smallest units"""

    def __init__(self, fees: Optional[Dict[ChainType, int]] = None):
        self.fees: Dict[ChainType, int] = {chain: 0 for chain in ChainType}
        if fees:
            for chain, amount in fees.items():
                self.fees[ChainType(chain)] = int(amount)

    @classmethod
    def from_config(cls, config: BridgeConfig) -> 'FeeSchedule':
        try:
            return cls({
                ChainType.WAGERR: to_smallest_unit(config.wagerr.withdrawal_fee),
                ChainType.BNB: to_smallest_unit(config.binance.withdrawal_fee),
            })
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid withdrawal fee: {e}") from e

    def get(self, chain: ChainType) -> int:
        return self.fees.get(ChainType(chain), 0)

    def __repr__(self):
        fees = ', '.join(f"{chain.value}={amount}" for chain, amount in self.fees.items())
        return f"FeeSchedule({fees})"


# Environment variables that override secrets from the config file
ENV_OVERRIDES = {
    'WAGERR_RPC_USERNAME': ('wagerr', 'username'),
    'WAGERR_RPC_PASSWORD': ('wagerr', 'password'),
    'WAGERR_WALLET_PASSPHRASE': ('wagerr', 'wallet_passphrase'),
    'BNB_DEPOSIT_ADDRESS': ('binance', 'deposit_address'),
    'BNB_SIGNER_URL': ('binance', 'signer_url'),
    'BNB_SIGNER_KEY': ('binance', 'signer_key'),
}


def _build_section(section_cls, data: Any, name: str):
    """Build a config section dataclass, rejecting unknown keys"""
    if data is None:
        return section_cls()
    if not isinstance(data, dict):
        raise ValidationError(f"Config section '{name}' must be a mapping")

    known = section_cls.__dataclass_fields__
    unknown = set(data) - set(known)
    if unknown:
        raise ValidationError(f"Unknown keys in '{name}': {sorted(unknown)}")

    values = {}
    for key, value in data.items():
        default = known[key].default
        # Coerce to the type of the default where one exists
        if value is not None and isinstance(default, (int, float)) and not isinstance(default, bool):
            try:
                value = type(default)(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid value for {name}.{key}: {value!r}") from e
        values[key] = value
    return section_cls(**values)


def load_config(config_path: str = "bridge_config.yaml", env_file: Optional[str] = None) -> BridgeConfig:
    """
    Load bridge configuration

    Args:
        config_path: Path to the YAML config
        env_file: Optional .env file (defaults to searching the working dir)

    Returns:
        BridgeConfig
    """
    load_dotenv(env_file)

    raw: Dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValidationError(f"Config file {config_path} must contain a mapping")
        logger.info(f"Loaded bridge config from {config_file}")
    else:
        logger.warning(f"Config file {config_file} not found, using defaults")

    sections = {
        'wagerr': WagerrConfig,
        'binance': BinanceConfig,
        'price_oracle': PriceOracleConfig,
        'settlement': SettlementConfig,
        'ledger': LedgerConfig,
        'logging': LoggingConfig,
    }
    unknown = set(raw) - set(sections)
    if unknown:
        raise ValidationError(f"Unknown config sections: {sorted(unknown)}")

    config = BridgeConfig(**{
        name: _build_section(cls, raw.get(name), name)
        for name, cls in sections.items()
    })

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            setattr(getattr(config, section), key, value)
            logger.debug(f"Config {section}.{key} set from {env_name}")

    if config.wagerr.min_confirmations < 0:
        raise ValidationError("wagerr.min_confirmations must not be negative")
    if config.price_oracle.source not in ('coingecko', 'exchange'):
        raise ValidationError(f"Unknown price_oracle.source: {config.price_oracle.source}")

    return config
