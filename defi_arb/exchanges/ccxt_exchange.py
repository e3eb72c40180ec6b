"""Centralized exchange adapter backed by ccxt."""

import time
from typing import Dict, List, Optional, Any

import ccxt.async_support as ccxt
from loguru import logger

from defi_arb.config import ExchangeEntry
from defi_arb.core.exceptions import AdapterUnavailable
from defi_arb.core.types import ConnectionStatus, TradeSide
from .base import BaseExchange, TradeResult


class CcxtExchange(BaseExchange):
    """Exchange implementation over any ccxt-supported venue."""

    def __init__(self, entry: ExchangeEntry, fee_rate: float):
        super().__init__(entry.name, entry.kind, entry.model_dump())
        self.entry = entry
        self.fee_rate = fee_rate
        self.ccxt_id = entry.ccxt_id or entry.name.lower()
        self.client: Optional[Any] = None

    def _symbol(self, asset: str) -> str:
        return f"{asset}/{self.entry.quote_asset}"

    def _init_client(self):
        """Initialize REST client, with keys only when configured."""
        exchange_class = getattr(ccxt, self.ccxt_id, None)
        if exchange_class is None:
            raise AdapterUnavailable(self.name, f"ccxt has no exchange '{self.ccxt_id}'")

        params: Dict[str, Any] = {
            "enableRateLimit": True,
            "timeout": 10000,
            "options": {"defaultType": "spot"},
        }
        if self.entry.key and self.entry.secret:
            params["apiKey"] = self.entry.key
            params["secret"] = self.entry.secret
            if self.entry.password:
                params["password"] = self.entry.password

        self.client = exchange_class(params)
        if self.entry.sandbox:
            self.client.set_sandbox_mode(True)
        logger.info(f"{self.name} ccxt client initialized ({self.ccxt_id}, sandbox={self.entry.sandbox})")

    async def get_prices(self, assets: List[str]) -> Dict[str, float]:
        """Fetch mid prices from tickers, falling back to the last trade."""
        if self.client is None:
            self._init_client()

        symbols = [self._symbol(asset) for asset in assets]
        tickers = await self.client.fetch_tickers(symbols)

        prices = {}
        for asset, symbol in zip(assets, symbols):
            ticker = tickers.get(symbol)
            if not ticker:
                continue
            bid, ask = ticker.get('bid'), ticker.get('ask')
            if bid and ask:
                price = (float(bid) + float(ask)) / 2
            elif ticker.get('last'):
                price = float(ticker['last'])
            else:
                logger.warning(f"{self.name} ticker for {symbol} has no usable price")
                continue
            prices[asset] = price

        self._last_update = time.time()
        return prices

    async def execute_trade(self, asset: str, amount: float, side: TradeSide) -> TradeResult:
        """Place a market order and report the fill."""
        start = time.time()
        symbol = self._symbol(asset)
        try:
            if self.client is None:
                self._init_client()

            order = await self.client.create_order(symbol, 'market', side.value, amount)

            filled = float(order.get('filled') or amount)
            price = float(order.get('average') or order.get('price') or 0.0)
            fee_info = order.get('fee') or {}
            fee = float(fee_info['cost']) if fee_info.get('cost') is not None else filled * price * self.fee_rate

            logger.info(f"{self.name} {side.value} {filled} {symbol} @ {price:.6f} (order {order.get('id')})")
            self.mark_status(ConnectionStatus.CONNECTED)
            return TradeResult(
                success=True,
                exchange=self.name,
                asset=asset,
                side=side,
                amount=filled,
                price=price,
                fee=fee,
                tx_id=order.get('id'),
                latency_ms=int((time.time() - start) * 1000),
                metadata={'status': order.get('status')},
            )

        except (ccxt.BaseError, AdapterUnavailable) as e:
            logger.error(f"{self.name} {side.value} order for {symbol} failed: {e}")
            return TradeResult(
                success=False, exchange=self.name, asset=asset, side=side,
                error=str(e), latency_ms=int((time.time() - start) * 1000),
            )

    async def close(self) -> None:
        """Close the ccxt client."""
        try:
            if self.client:
                await self.client.close()
                self.client = None
        except Exception as e:
            logger.error(f"Error closing {self.name}: {e}")
        await super().close()
