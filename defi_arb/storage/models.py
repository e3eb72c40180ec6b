"""Data models for persisted arbitrage opportunities."""

from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from defi_arb.core.types import VenueKind


class OpportunityStatus(Enum):
    """Lifecycle status of a persisted opportunity."""
    ACTIVE = "active"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"
    INACTIVE = "inactive"


# Statuses that still own their (asset, buy, sell) triple
OPEN_STATUSES = (OpportunityStatus.ACTIVE, OpportunityStatus.EXECUTING)


@dataclass
class ArbitrageOpportunity:
    """Arbitrage opportunity model."""
    id: Optional[int] = None
    asset: str = ""
    buy_exchange: str = ""
    sell_exchange: str = ""
    buy_price: float = 0.0
    sell_price: float = 0.0
    profit_amount: float = 0.0
    profit_percentage: float = 0.0
    timestamp: float = 0.0
    status: OpportunityStatus = OpportunityStatus.ACTIVE
    risk_score: float = 0.0
    confidence: float = 0.0
    buy_kind: Optional[VenueKind] = None
    sell_kind: Optional[VenueKind] = None
    executed_at: Optional[float] = None
    actual_profit: Optional[float] = None
    actual_profit_percentage: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status == OpportunityStatus.ACTIVE

    @property
    def key(self) -> tuple:
        return (self.asset, self.buy_exchange, self.sell_exchange)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for display and JSON output."""
        data = asdict(self)
        data['status'] = self.status.value
        data['is_active'] = self.is_active
        data['buy_kind'] = self.buy_kind.value if self.buy_kind else None
        data['sell_kind'] = self.sell_kind.value if self.sell_kind else None
        data['timestamp'] = datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()
        if self.executed_at is not None:
            data['executed_at'] = datetime.fromtimestamp(self.executed_at, tz=timezone.utc).isoformat()
        return data


_FIELD_NAMES = {f.name for f in fields(ArbitrageOpportunity)}


def check_update_fields(values: Dict[str, Any]) -> None:
    """Reject updates to unknown fields or to the id."""
    if 'id' in values:
        raise ValueError("Opportunity id cannot be updated")
    unknown = set(values) - _FIELD_NAMES
    if unknown:
        raise ValueError(f"Unknown opportunity fields: {sorted(unknown)}")
