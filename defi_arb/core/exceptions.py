"""Exception hierarchy for the arbitrage engine."""

from typing import Optional, Dict, Any


class ArbitrageError(Exception):
    """Base exception for all arbitrage engine errors."""

    code = "ArbitrageError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigError(ArbitrageError):
    """Raised when configuration cannot be loaded or is inconsistent."""

    code = "ConfigError"


class AdapterUnavailable(ArbitrageError):
    """Raised when a single exchange adapter call fails."""

    code = "AdapterUnavailable"

    def __init__(self, exchange: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{exchange}: {message}", details)
        self.exchange = exchange


class ExecutionError(ArbitrageError):
    """Base class for errors surfaced to callers of trade execution."""

    code = "ExecutionError"

    def __init__(self, opportunity_id: int, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.opportunity_id = opportunity_id


class OpportunityNotFound(ExecutionError):
    """No opportunity exists with the requested id."""

    code = "NotFound"

    def __init__(self, opportunity_id: int):
        super().__init__(opportunity_id, f"Arbitrage opportunity with ID {opportunity_id} not found")


class StaleOpportunity(ExecutionError):
    """The opportunity is no longer active (deactivated, executed or executing)."""

    code = "Stale"

    def __init__(self, opportunity_id: int, status: str):
        super().__init__(
            opportunity_id,
            f"Arbitrage opportunity {opportunity_id} is no longer active (status: {status})",
            {'status': status},
        )


class NoLongerProfitable(ExecutionError):
    """Revalidation at execution time found the spread gone."""

    code = "NoLongerProfitable"

    def __init__(self, opportunity_id: int, profit_percentage: Optional[float], reason: str = ""):
        if profit_percentage is None:
            message = f"Opportunity {opportunity_id} no longer profitable: {reason or 'price unavailable'}"
        else:
            message = f"Opportunity {opportunity_id} no longer profitable ({profit_percentage:.2f}%)"
        super().__init__(opportunity_id, message, {'profit_percentage': profit_percentage, 'reason': reason})
        self.profit_percentage = profit_percentage


class Throttled(ExecutionError):
    """All execution slots are in use."""

    code = "Throttled"

    def __init__(self, opportunity_id: int, max_concurrent: int):
        super().__init__(
            opportunity_id,
            f"Maximum number of concurrent executions ({max_concurrent}) reached. Please try again later.",
            {'max_concurrent': max_concurrent},
        )


class LegFailure(ExecutionError):
    """A buy or sell leg failed; the recorded summary is attached."""

    code = "LegFailure"

    def __init__(self, opportunity_id: int, leg: str, message: str, summary=None):
        super().__init__(opportunity_id, f"{leg} leg failed: {message}", {'leg': leg})
        self.leg = leg
        self.summary = summary
