"""Core arbitrage logic: sampling, detection, scoring, sync and execution.

Only the dependency-free modules are re-exported here; ``defi_arb.config``
imports ``core.types``, so modules that need the config are imported by
their full path.
"""

from .types import ArbitrageRoute, RouteLeg, ExecutionSummary, LegResult, VenueKind, TradeSide
from .clock import SystemClock, ManualClock
from .performance import PerformanceAggregator, PerformanceMetrics
from .monitor import MonitoringLoop

__all__ = [
    'ArbitrageRoute',
    'RouteLeg',
    'ExecutionSummary',
    'LegResult',
    'VenueKind',
    'TradeSide',
    'SystemClock',
    'ManualClock',
    'PerformanceAggregator',
    'PerformanceMetrics',
    'MonitoringLoop',
]
