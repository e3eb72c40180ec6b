"""Utility functions for the arbitrage engine."""

from typing import Optional
import time


def format_usd(amount: float) -> str:
    """Format a USD amount with precision suited to its size."""
    if abs(amount) >= 1000:
        return f"${amount:,.2f}"
    elif abs(amount) >= 1:
        return f"${amount:.2f}"
    else:
        return f"${amount:.4f}"


def format_percentage(value: float) -> str:
    """Format a value already expressed in percent."""
    return f"{value:.2f}%"


def format_duration_ms(ms: float) -> str:
    """Format a duration given in milliseconds."""
    if ms < 1000:
        return f"{ms:.0f}ms"
    return f"{ms / 1000:.1f}s"


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default if denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value between min and max."""
    return max(min_val, min(value, max_val))


def is_stale_timestamp(timestamp: float, max_age_seconds: float, now: Optional[float] = None) -> bool:
    """Check if a timestamp is stale."""
    if now is None:
        now = time.time()
    return now - timestamp > max_age_seconds
