"""Performance metrics over the execution history."""

from dataclasses import dataclass, field
from typing import Dict, List, Any

from defi_arb.core.types import ExecutionSummary
from defi_arb.core.utils import safe_divide


@dataclass
class PerformanceMetrics:
    """Aggregated execution performance."""
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    success_rate: float = 0.0  # percent
    total_profit: float = 0.0
    average_profit: float = 0.0
    average_execution_time_ms: float = 0.0
    profit_by_asset: Dict[str, float] = field(default_factory=dict)
    profit_expectation_accuracy: float = 0.0  # percent, 100 = realized exactly as expected
    recent_executions: List[ExecutionSummary] = field(default_factory=list)
    monitored_exchanges: int = 0
    monitored_assets: int = 0
    active_routes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_executions': self.total_executions,
            'successful_executions': self.successful_executions,
            'failed_executions': self.failed_executions,
            'success_rate': self.success_rate,
            'total_profit': self.total_profit,
            'average_profit': self.average_profit,
            'average_execution_time_ms': self.average_execution_time_ms,
            'profit_by_asset': dict(self.profit_by_asset),
            'profit_expectation_accuracy': self.profit_expectation_accuracy,
            'recent_executions': [s.to_dict() for s in self.recent_executions],
            'monitored_exchanges': self.monitored_exchanges,
            'monitored_assets': self.monitored_assets,
            'active_routes': self.active_routes,
        }


class PerformanceAggregator:
    """Read-only aggregation over execution summaries."""

    def __init__(self, recent_window: int = 5):
        self.recent_window = recent_window

    def aggregate(self, history: List[ExecutionSummary]) -> PerformanceMetrics:
        """Compute metrics; an empty history yields all zeros."""
        metrics = PerformanceMetrics()
        if not history:
            return metrics

        successful = [s for s in history if s.success]
        metrics.total_executions = len(history)
        metrics.successful_executions = len(successful)
        metrics.failed_executions = len(history) - len(successful)
        metrics.success_rate = safe_divide(len(successful), len(history)) * 100
        metrics.total_profit = sum(s.net_profit for s in successful)
        metrics.average_profit = safe_divide(metrics.total_profit, len(successful))
        metrics.average_execution_time_ms = sum(s.execution_time_ms for s in history) / len(history)

        for summary in successful:
            metrics.profit_by_asset[summary.asset] = metrics.profit_by_asset.get(summary.asset, 0.0) + summary.net_profit

        # Mean signed deviation: over- and under-delivery offset each other
        deviations = [
            (s.actual_profit - s.expected_profit) / abs(s.expected_profit) * 100
            for s in successful if s.expected_profit
        ]
        if deviations:
            metrics.profit_expectation_accuracy = max(0.0, 100 - abs(sum(deviations) / len(deviations)))

        if self.recent_window > 0:
            metrics.recent_executions = list(history[-self.recent_window:])
        return metrics
