"""Simulated venue for demo runs and paper trading."""

import asyncio
import random
import time
from typing import Dict, List, Optional

from loguru import logger

from defi_arb.config import SimulationConfig
from defi_arb.core.types import VenueKind, ConnectionStatus, TradeSide
from .base import BaseExchange, TradeResult


class SimulatedExchange(BaseExchange):
    """Exchange that quotes a noisy walk around baseline prices.

    Each venue carries a persistent bias so that spreads between venues are
    realistic rather than pure noise. With ``seed`` set, the sequence of
    prices and fills is reproducible per exchange name.
    """

    def __init__(self, name: str, kind: VenueKind, sim: SimulationConfig,
                 fee_rate: float, bias: float = 0.0, seed: Optional[int] = None):
        super().__init__(name, kind, {'bias': bias, 'fee_rate': fee_rate})
        self.sim = sim
        self.fee_rate = fee_rate
        self.bias = bias
        self._rng = random.Random(f"{seed}:{name}") if seed is not None else random.Random()
        self._last_prices: Dict[str, float] = {}
        self._trade_counter = 0

    def _quote(self, asset: str) -> Optional[float]:
        """Generate the next price for an asset, or None if unlisted."""
        baseline = self.sim.baseline_prices.get(asset)
        if baseline is None:
            return None
        jitter = self._rng.uniform(-self.sim.price_jitter_pct, self.sim.price_jitter_pct) / 100
        price = baseline * (1 + self.bias + jitter)
        self._last_prices[asset] = price
        return price

    async def get_prices(self, assets: List[str]) -> Dict[str, float]:
        """Fetch the current price of each listed asset."""
        prices = {}
        for asset in assets:
            price = self._quote(asset)
            if price is not None:
                prices[asset] = price
        self._last_update = time.time()
        return prices

    def _slippage_rate(self, amount: float) -> float:
        if amount > self.sim.large_order_threshold:
            return self.sim.large_order_slippage_bps / 10000
        return self.sim.small_order_slippage_bps / 10000

    async def execute_trade(self, asset: str, amount: float, side: TradeSide) -> TradeResult:
        """Simulate a market order with latency, slippage and occasional failure."""
        start = time.time()
        latency_ms = self._rng.randint(self.sim.min_latency_ms, self.sim.max_latency_ms)
        await asyncio.sleep(latency_ms / 1000)

        price = self._last_prices.get(asset) or self._quote(asset)
        if price is None:
            return TradeResult(
                success=False, exchange=self.name, asset=asset, side=side,
                error=f"{asset} is not listed on {self.name}",
            )

        if self._rng.random() > self.sim.success_rate:
            logger.debug(f"Simulated {side.value} of {amount} {asset} on {self.name} failed")
            return TradeResult(
                success=False, exchange=self.name, asset=asset, side=side,
                error="Simulated trade execution failure due to market conditions",
                latency_ms=int((time.time() - start) * 1000),
            )

        slippage = self._slippage_rate(amount)
        fill_price = price * (1 + slippage) if side == TradeSide.BUY else price * (1 - slippage)
        fee = amount * fill_price * self.fee_rate

        self._trade_counter += 1
        tx_id = f"tx-{int(time.time() * 1000)}-{self._trade_counter}{self._rng.randint(1000, 9999)}"
        self.mark_status(ConnectionStatus.CONNECTED)

        return TradeResult(
            success=True,
            exchange=self.name,
            asset=asset,
            side=side,
            amount=amount,
            price=fill_price,
            fee=fee,
            tx_id=tx_id,
            latency_ms=int((time.time() - start) * 1000),
            metadata={'slippage': slippage},
        )
