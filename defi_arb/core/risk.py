"""Risk and confidence scoring for arbitrage routes.

Both scores are pure functions of the two legs, the profit percentage and
the scoring tables, so the same inputs always produce the same scores.
"""

from typing import NamedTuple, Optional

from defi_arb.config import ScoringConfig
from defi_arb.core.types import VenueKind
from defi_arb.core.utils import clamp


class VenueRef(NamedTuple):
    """Exchange name and venue kind of one leg."""
    exchange: str
    kind: VenueKind


def _profit_band(profit_pct: float, bands) -> float:
    """Value of the highest band whose threshold the profit exceeds."""
    for threshold, value in sorted(bands, key=lambda band: band[0], reverse=True):
        if profit_pct > threshold:
            return value
    return 0.0


def calculate_risk_score(buy: VenueRef, sell: VenueRef, profit_pct: float,
                         scoring: Optional[ScoringConfig] = None) -> float:
    """Risk score in [0, 100]; higher is riskier."""
    scoring = scoring or ScoringConfig()
    risk = scoring.base_risk

    # Outsized spreads usually mean bad data or thin books
    risk += _profit_band(profit_pct, scoring.profit_risk_bands)

    for leg in (buy, sell):
        if leg.kind == VenueKind.DEX:
            risk += scoring.dex_risk_penalty
        risk += scoring.exchange_risk.get(leg.exchange, 0.0)

    return clamp(risk, 0.0, 100.0)


def calculate_confidence(buy: VenueRef, sell: VenueRef, profit_pct: float,
                         scoring: Optional[ScoringConfig] = None) -> float:
    """Confidence in [0, 1] that the route can be captured as quoted."""
    scoring = scoring or ScoringConfig()

    def reliability(exchange: str) -> float:
        return scoring.exchange_reliability.get(exchange, scoring.default_reliability)

    confidence = scoring.base_confidence * reliability(buy.exchange) * reliability(sell.exchange)

    confidence -= _profit_band(profit_pct, scoring.confidence_profit_bands)
    if profit_pct < scoring.low_profit_pct:
        confidence -= scoring.low_profit_penalty

    for leg in (buy, sell):
        if leg.kind == VenueKind.CEX:
            confidence += scoring.cex_confidence_bonus

    return clamp(confidence, 0.0, 1.0)
