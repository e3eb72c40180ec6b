#!/usr/bin/env python3
"""
Shared types and data structures for the arbitrage engine.
This file breaks circular imports between modules.
"""

from datetime import datetime
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


class VenueKind(Enum):
    """Kind of trading venue."""
    DEX = "DEX"  # Decentralized exchange
    CEX = "CEX"  # Centralized exchange


class ConnectionStatus(Enum):
    """Connectivity status of an exchange adapter."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class TradeSide(Enum):
    """Side of a trade leg."""
    BUY = "buy"
    SELL = "sell"


class ExecutionState(Enum):
    """Lifecycle of a single execution attempt."""
    REQUESTED = "requested"
    VALIDATED = "validated"
    LEG1_BUY = "leg1_buy"
    LEG2_SELL = "leg2_sell"
    SETTLED = "settled"
    ABORTED = "aborted"


@dataclass
class PriceSample:
    """Latest sampled price for an (exchange, asset) pair."""
    exchange: str
    asset: str
    price: float
    sampled_at: float


@dataclass
class RouteLeg:
    """One planned side of an arbitrage route."""
    exchange: str
    kind: VenueKind
    side: TradeSide
    expected_price: float
    amount: float
    estimated_fee: float


@dataclass
class ArbitrageRoute:
    """Candidate arbitrage route produced by the detector."""
    id: str
    asset: str
    buy: RouteLeg
    sell: RouteLeg
    profit_amount: float
    profit_percentage: float
    estimated_execution_ms: int
    risk_score: float
    confidence: float
    detected_at: float

    @property
    def key(self) -> tuple:
        """Identity of the route: (asset, buy exchange, sell exchange)."""
        return (self.asset, self.buy.exchange, self.sell.exchange)


@dataclass
class LegResult:
    """Realized outcome of one execution leg."""
    exchange: str
    side: TradeSide
    expected_price: float
    actual_price: float = 0.0
    amount: float = 0.0
    fee: float = 0.0
    success: bool = False
    tx_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExecutionSummary:
    """Record of one execution attempt, successful or not."""
    route_id: str
    opportunity_id: int
    asset: str
    success: bool
    start_time: datetime
    end_time: datetime
    legs: List[LegResult] = field(default_factory=list)
    expected_profit: float = 0.0
    actual_profit: float = 0.0
    profit_difference: float = 0.0
    gas_cost: float = 0.0
    net_profit: float = 0.0
    execution_time_ms: int = 0
    state: ExecutionState = ExecutionState.REQUESTED
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for display and JSON output."""
        return {
            'route_id': self.route_id,
            'opportunity_id': self.opportunity_id,
            'asset': self.asset,
            'success': self.success,
            'state': self.state.value,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'legs': [
                {
                    'exchange': leg.exchange,
                    'side': leg.side.value,
                    'expected_price': leg.expected_price,
                    'actual_price': leg.actual_price,
                    'amount': leg.amount,
                    'fee': leg.fee,
                    'success': leg.success,
                    'tx_id': leg.tx_id,
                    'error': leg.error,
                }
                for leg in self.legs
            ],
            'expected_profit': self.expected_profit,
            'actual_profit': self.actual_profit,
            'profit_difference': self.profit_difference,
            'gas_cost': self.gas_cost,
            'net_profit': self.net_profit,
            'execution_time_ms': self.execution_time_ms,
            'error': self.error,
        }
