"""Base exchange interface for the arbitrage engine."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from dataclasses import dataclass

from defi_arb.core.types import VenueKind, ConnectionStatus, TradeSide


@dataclass
class TradeResult:
    """Trade execution result."""
    success: bool
    exchange: str
    asset: str
    side: TradeSide
    amount: float = 0.0
    price: float = 0.0
    fee: float = 0.0
    tx_id: Optional[str] = None
    error: Optional[str] = None
    latency_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def notional(self) -> float:
        """Quote value of the filled amount."""
        return self.amount * self.price


class BaseExchange(ABC):
    """Base exchange interface.

    Adapters report prices in the common quote currency and never raise for
    a rejected trade: a failed fill comes back as ``TradeResult(success=False)``.
    Connectivity problems may raise and are handled by the caller.
    """

    def __init__(self, name: str, kind: VenueKind, config: Optional[Dict[str, Any]] = None):
        self.name = name
        self.kind = kind
        self.config = config or {}
        self.connection_status = ConnectionStatus.DISCONNECTED
        self._last_update = 0.0

    @abstractmethod
    async def get_prices(self, assets: List[str]) -> Dict[str, float]:
        """Fetch the current price of each asset this venue quotes."""
        pass

    @abstractmethod
    async def execute_trade(self, asset: str, amount: float, side: TradeSide) -> TradeResult:
        """Execute a market trade of ``amount`` base units."""
        pass

    async def close(self) -> None:
        """Release any network resources."""
        self.connection_status = ConnectionStatus.DISCONNECTED

    def is_connected(self) -> bool:
        """Check if exchange is connected."""
        return self.connection_status == ConnectionStatus.CONNECTED

    def mark_status(self, status: ConnectionStatus) -> None:
        """Record the outcome of the latest adapter call."""
        self.connection_status = status

    def get_last_update(self) -> float:
        """Get timestamp of last successful price fetch."""
        return self._last_update

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, kind={self.kind.value})"
