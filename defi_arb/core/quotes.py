"""Price cache and multi-exchange sampling."""

import asyncio
import math
import threading
from typing import Dict, List, Optional, Tuple, Any
from dataclasses import dataclass, field
from loguru import logger

from defi_arb.core.clock import SystemClock
from defi_arb.core.exceptions import AdapterUnavailable
from defi_arb.core.types import PriceSample, ConnectionStatus
from defi_arb.core.utils import is_stale_timestamp
from defi_arb.exchanges.base import BaseExchange
from defi_arb.exchanges.registry import ExchangeRegistry


class PriceCache:
    """Latest price per (exchange, asset).

    Written only by the sampler; read concurrently by detection and by
    execution revalidation.
    """

    def __init__(self, clock=None):
        self.clock = clock or SystemClock()
        self._prices: Dict[Tuple[str, str], PriceSample] = {}
        self._lock = threading.RLock()

    def update(self, exchange: str, asset: str, price: float, sampled_at: Optional[float] = None) -> bool:
        """Store a price sample. Only finite positive prices are stored."""
        try:
            value = float(price)
        except (TypeError, ValueError):
            value = math.nan
        if not math.isfinite(value) or value <= 0:
            logger.warning(f"Rejected invalid price from {exchange} for {asset}: {price!r}")
            return False

        sample = PriceSample(
            exchange=exchange,
            asset=asset,
            price=value,
            sampled_at=sampled_at if sampled_at is not None else self.clock.time(),
        )
        with self._lock:
            self._prices[(exchange, asset)] = sample
        return True

    def get(self, exchange: str, asset: str) -> Optional[PriceSample]:
        """Latest sample for a pair regardless of age."""
        with self._lock:
            return self._prices.get((exchange, asset))

    def get_price(self, exchange: str, asset: str, max_age: Optional[float] = None) -> Optional[float]:
        """Latest price for a pair, or None if missing or older than ``max_age`` seconds."""
        sample = self.get(exchange, asset)
        if sample is None:
            return None
        if max_age is not None and is_stale_timestamp(sample.sampled_at, max_age, self.clock.time()):
            return None
        return sample.price

    def samples_for_asset(self, asset: str, max_age: Optional[float] = None) -> List[PriceSample]:
        """All fresh samples for an asset across exchanges."""
        now = self.clock.time()
        with self._lock:
            samples = [s for (_, a), s in self._prices.items() if a == asset]
        if max_age is not None:
            samples = [s for s in samples if not is_stale_timestamp(s.sampled_at, max_age, now)]
        return samples

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Prices as {asset: {exchange: price}}."""
        result: Dict[str, Dict[str, float]] = {}
        with self._lock:
            for (exchange, asset), sample in self._prices.items():
                result.setdefault(asset, {})[exchange] = sample.price
        return result

    def summary(self) -> Dict[str, Any]:
        """Cache statistics for status output."""
        now = self.clock.time()
        with self._lock:
            samples = list(self._prices.values())
        if not samples:
            return {'entries': 0, 'assets': 0, 'exchanges': 0, 'oldest_age_sec': None}
        return {
            'entries': len(samples),
            'assets': len({s.asset for s in samples}),
            'exchanges': len({s.exchange for s in samples}),
            'oldest_age_sec': max(now - s.sampled_at for s in samples),
        }

    def clear(self) -> None:
        with self._lock:
            self._prices.clear()


@dataclass
class SamplingReport:
    """Outcome of one sampling round."""
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    prices_written: int = 0

    @property
    def all_failed(self) -> bool:
        return not self.succeeded and bool(self.failed)


class PriceSampler:
    """Fans out one price request per exchange and writes the cache."""

    def __init__(self, registry: ExchangeRegistry, cache: PriceCache, assets: List[str],
                 timeout_sec: Optional[float] = None):
        self.registry = registry
        self.cache = cache
        self.assets = assets
        self.timeout_sec = timeout_sec

    async def _sample_exchange(self, exchange: BaseExchange) -> int:
        """Sample one exchange; errors are isolated to it."""
        try:
            call = exchange.get_prices(self.assets)
            if self.timeout_sec is not None:
                prices = await asyncio.wait_for(call, timeout=self.timeout_sec)
            else:
                prices = await call
        except asyncio.TimeoutError:
            exchange.mark_status(ConnectionStatus.ERROR)
            raise AdapterUnavailable(exchange.name, f"price request timed out after {self.timeout_sec}s")
        except AdapterUnavailable:
            exchange.mark_status(ConnectionStatus.ERROR)
            raise
        except Exception as e:
            exchange.mark_status(ConnectionStatus.ERROR)
            raise AdapterUnavailable(exchange.name, str(e)) from e

        if not isinstance(prices, dict):
            exchange.mark_status(ConnectionStatus.ERROR)
            raise AdapterUnavailable(exchange.name, f"malformed price response: {type(prices).__name__}")

        written = 0
        for asset, price in prices.items():
            if self.cache.update(exchange.name, asset, price):
                written += 1
        exchange.mark_status(ConnectionStatus.CONNECTED)
        return written

    async def sample(self) -> SamplingReport:
        """Run one sampling round across all exchanges."""
        exchanges = list(self.registry)
        results = await asyncio.gather(
            *(self._sample_exchange(exchange) for exchange in exchanges),
            return_exceptions=True,
        )

        report = SamplingReport()
        for exchange, result in zip(exchanges, results):
            if isinstance(result, AdapterUnavailable):
                logger.warning(f"Price sampling failed: {result}")
                report.failed[exchange.name] = str(result)
            elif isinstance(result, BaseException):
                # Cancellation and other non-adapter errors are not ours to hide
                raise result
            else:
                report.succeeded.append(exchange.name)
                report.prices_written += result

        logger.debug(
            f"Sampled {len(report.succeeded)}/{len(exchanges)} exchanges, "
            f"{report.prices_written} prices written"
        )
        return report
