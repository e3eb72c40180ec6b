"""Exchange adapters for the arbitrage engine."""

from .base import BaseExchange, TradeResult
from .fees import FeeSchedule
from .registry import ExchangeRegistry, build_exchanges, create_exchange
from .simulated import SimulatedExchange

__all__ = [
    'BaseExchange',
    'TradeResult',
    'FeeSchedule',
    'ExchangeRegistry',
    'build_exchanges',
    'create_exchange',
    'SimulatedExchange',
]
