"""Configuration management for the DeFi arbitrage engine."""

import os
from pathlib import Path
from typing import Dict, List, Optional
import yaml
from pydantic import BaseModel, Field

from defi_arb.core.types import VenueKind


class ExchangeEntry(BaseModel):
    """A single venue to monitor."""
    name: str
    kind: VenueKind
    adapter: str = "simulated"  # simulated | ccxt
    bias: float = 0.0  # Simulated venues only: persistent price offset (0.001 = +0.1%)
    ccxt_id: Optional[str] = None
    key: Optional[str] = None
    secret: Optional[str] = None
    password: Optional[str] = None
    sandbox: bool = True  # Default to sandbox for safety
    quote_asset: str = "USDT"


def _default_exchanges() -> List[ExchangeEntry]:
    dexes = {
        "Uniswap": 0.001,
        "SushiSwap": -0.0005,
        "Curve": 0.0,
        "PancakeSwap": 0.0,
        "Balancer": 0.0,
        "Jupiter": -0.0008,
        "Raydium": 0.0005,
        "Trader Joe": 0.0,
    }
    cexes = {
        "OKX": 0.0008,
        "Binance": -0.0002,
        "Coinbase": 0.0015,
        "Kraken": 0.0,
        "Kucoin": 0.0,
        "Bybit": 0.0,
        "Huobi": 0.0,
        "Bitfinex": 0.0,
    }
    entries = [ExchangeEntry(name=name, kind=VenueKind.DEX, bias=bias) for name, bias in dexes.items()]
    entries += [ExchangeEntry(name=name, kind=VenueKind.CEX, bias=bias) for name, bias in cexes.items()]
    return entries


class FeeConfig(BaseModel):
    """Fee configuration.

    Keys are exchange names or venue kinds ("DEX", "CEX"); an exchange name
    takes precedence over its kind.
    """
    taker_bps: Dict[str, float] = Field(default_factory=lambda: {"DEX": 30.0, "CEX": 10.0, "default": 10.0})


class DetectorConfig(BaseModel):
    """Opportunity detection configuration."""
    min_profit_pct: float = 0.25  # Net profit after fees, percent of buy cost
    trade_amount: float = 1.0  # Base asset units per route
    profit_tolerance_pct: float = 0.1  # Routes within this many profit points are the same
    leg_latency_ms: Dict[str, int] = Field(default_factory=lambda: {"CEX": 1500, "DEX": 2500})
    max_price_age_sec: Optional[float] = None  # None = 2x monitoring interval


class ExecutionConfig(BaseModel):
    """Execution configuration."""
    max_concurrent_executions: int = 3
    max_execution_time_ms: int = 10000
    gas_cost_usd: Dict[str, float] = Field(default_factory=lambda: {"DEX": 15.0, "CEX": 0.0})


class MonitorConfig(BaseModel):
    """Monitoring loop configuration."""
    interval_sec: float = 5.0
    route_ttl_sec: float = 300.0
    sample_timeout_sec: Optional[float] = 5.0


class ScoringConfig(BaseModel):
    """Risk and confidence heuristics."""
    base_risk: float = 50.0
    dex_risk_penalty: float = 5.0
    # (profit threshold %, risk penalty), checked highest first
    profit_risk_bands: List[List[float]] = Field(default_factory=lambda: [[5.0, 20.0], [2.0, 10.0], [1.0, 5.0]])
    exchange_risk: Dict[str, float] = Field(default_factory=lambda: {
        "Uniswap": -5.0,
        "SushiSwap": 0.0,
        "Curve": -3.0,
        "PancakeSwap": 0.0,
        "Jupiter": 3.0,
        "OKX": -8.0,
        "Binance": -10.0,
        "Coinbase": -7.0,
        "Kraken": -5.0,
    })
    base_confidence: float = 0.7
    default_reliability: float = 0.8
    exchange_reliability: Dict[str, float] = Field(default_factory=lambda: {
        "Binance": 0.95,
        "Coinbase": 0.95,
        "Kraken": 0.93,
        "OKX": 0.92,
        "Bybit": 0.90,
        "Huobi": 0.88,
        "Bitfinex": 0.87,
        "Kucoin": 0.86,
        "Uniswap": 0.85,
        "Curve": 0.84,
        "PancakeSwap": 0.83,
        "SushiSwap": 0.82,
        "Jupiter": 0.82,
        "Balancer": 0.81,
        "Trader Joe": 0.80,
        "Raydium": 0.80,
    })
    # (profit threshold %, confidence penalty), checked highest first
    confidence_profit_bands: List[List[float]] = Field(default_factory=lambda: [[5.0, 0.3], [3.0, 0.15]])
    low_profit_pct: float = 0.5
    low_profit_penalty: float = 0.1
    cex_confidence_bonus: float = 0.1


class SimulationConfig(BaseModel):
    """Parameters for simulated venues."""
    seed: Optional[int] = None
    baseline_prices: Dict[str, float] = Field(default_factory=lambda: {
        "BTC": 65842.50,
        "ETH": 3245.89,
        "SOL": 103.47,
        "MATIC": 0.87,
        "AVAX": 34.25,
        "BNB": 603.12,
        "ARB": 1.23,
    })
    price_jitter_pct: float = 0.25  # Uniform noise, +/- percent of baseline
    success_rate: float = 0.98
    min_latency_ms: int = 500
    max_latency_ms: int = 1500
    small_order_slippage_bps: float = 5.0
    large_order_slippage_bps: float = 20.0
    large_order_threshold: float = 10.0


class PerformanceConfig(BaseModel):
    """Performance reporting configuration."""
    recent_window: int = 5


class StorageConfig(BaseModel):
    """Storage configuration."""
    backend: str = "memory"  # memory | sqlite
    db_path: str = "arb.sqlite"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    serialize: bool = False


class Config(BaseModel):
    """Main configuration model."""
    assets: List[str] = ["BTC", "ETH", "SOL", "MATIC", "AVAX", "BNB", "ARB"]
    exchanges: List[ExchangeEntry] = Field(default_factory=_default_exchanges)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_taker_fee_bps(self, exchange: str, kind: VenueKind) -> float:
        """Get taker fee in basis points for an exchange."""
        taker = self.fees.taker_bps
        if exchange in taker:
            return taker[exchange]
        return taker.get(kind.value, taker.get("default", 10.0))

    def get_fee_rate(self, exchange: str, kind: VenueKind) -> float:
        """Get taker fee as a decimal rate (e.g., 0.001 for 10 bps)."""
        return self.get_taker_fee_bps(exchange, kind) / 10000

    def get_gas_cost(self, kind: VenueKind) -> float:
        """Flat network cost estimate for one leg on a venue kind."""
        return self.execution.gas_cost_usd.get(kind.value, 0.0)

    def get_leg_latency_ms(self, kind: VenueKind) -> int:
        """Estimated latency of one leg on a venue kind."""
        return self.detector.leg_latency_ms.get(kind.value, 2000)

    @property
    def price_max_age_sec(self) -> float:
        """Oldest cached price usable for detection and revalidation."""
        if self.detector.max_price_age_sec is not None:
            return self.detector.max_price_age_sec
        return self.monitor.interval_sec * 2

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            config_str = f.read()

        # Substitute environment variables
        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        config_data = yaml.safe_load(config_str) or {}
        return cls(**config_data)


def get_config(config_path: Optional[str] = None) -> Config:
    """Get configuration instance, falling back to defaults when no file is given."""
    if config_path is None:
        return Config()
    return Config.load_from_file(config_path)
