"""Fee calculation for exchange legs."""

from defi_arb.config import Config
from defi_arb.core.types import VenueKind


class FeeSchedule:
    """Taker fees and network costs per exchange, resolved from config."""

    def __init__(self, config: Config):
        self.config = config

    def get_taker_fee_bps(self, exchange: str, kind: VenueKind) -> float:
        """Get taker fee in basis points for an exchange."""
        return self.config.get_taker_fee_bps(exchange, kind)

    def get_taker_fee_rate(self, exchange: str, kind: VenueKind) -> float:
        """Get taker fee as a decimal rate (e.g., 0.001 for 10 bps)."""
        return self.config.get_fee_rate(exchange, kind)

    def calculate_fee_amount(self, exchange: str, kind: VenueKind, notional: float) -> float:
        """Calculate fee amount for a given notional."""
        return notional * self.get_taker_fee_rate(exchange, kind)

    def gas_cost(self, kind: VenueKind) -> float:
        """Flat network cost for one leg on this venue kind."""
        return self.config.get_gas_cost(kind)

    def route_gas_cost(self, buy_kind: VenueKind, sell_kind: VenueKind) -> float:
        """Network cost of a two-leg route."""
        return self.gas_cost(buy_kind) + self.gas_cost(sell_kind)
