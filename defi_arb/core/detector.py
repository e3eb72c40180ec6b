"""Arbitrage opportunity detection across DEX and CEX venues."""

import itertools
import math
import threading
from typing import Dict, List, Optional, Tuple, Any
from loguru import logger

from defi_arb.config import Config
from defi_arb.core.clock import SystemClock
from defi_arb.core.quotes import PriceCache
from defi_arb.core.risk import VenueRef, calculate_risk_score, calculate_confidence
from defi_arb.core.types import ArbitrageRoute, RouteLeg, TradeSide, VenueKind
from defi_arb.exchanges.registry import ExchangeRegistry


def net_profit_per_unit(buy_price: float, sell_price: float, buy_fee_rate: float, sell_fee_rate: float) -> float:
    """Spread left after paying taker fees on both legs, per unit of base asset."""
    return (sell_price - buy_price) - (buy_price * buy_fee_rate + sell_price * sell_fee_rate)


def net_profit_percentage(buy_price: float, sell_price: float, buy_fee_rate: float, sell_fee_rate: float) -> float:
    """Net profit as a percentage of the buy-side cost."""
    if buy_price <= 0:
        raise ValueError(f"Buy price must be positive, got {buy_price}")
    return net_profit_per_unit(buy_price, sell_price, buy_fee_rate, sell_fee_rate) / buy_price * 100


class ArbitrageDetector:
    """Finds every profitable ordered exchange pair for each tracked asset."""

    def __init__(self, config: Config, registry: ExchangeRegistry, clock=None):
        self.config = config
        self.registry = registry
        self.clock = clock or SystemClock()
        self.min_profit_pct = config.detector.min_profit_pct
        self.trade_amount = config.detector.trade_amount
        self._counter = itertools.count(1)

    def _next_route_id(self, now: float) -> str:
        return f"route-{int(now * 1000)}-{next(self._counter)}"

    def detect_routes(self, cache: PriceCache, now: Optional[float] = None) -> List[ArbitrageRoute]:
        """Detect arbitrage routes from the cached prices."""
        now = now if now is not None else self.clock.time()
        max_age = self.config.price_max_age_sec
        best: Dict[Tuple[str, str, str], ArbitrageRoute] = {}

        for asset in self.config.assets:
            samples = [
                s for s in cache.samples_for_asset(asset, max_age=max_age)
                if s.exchange in self.registry
            ]
            if len(samples) < 2:
                logger.debug(f"{asset}: {len(samples)} fresh prices, need at least 2")
                continue

            for buy, sell in itertools.permutations(samples, 2):
                route = self._evaluate_pair(asset, buy.exchange, buy.price, sell.exchange, sell.price, now)
                if route is None:
                    continue
                existing = best.get(route.key)
                if existing is None or route.profit_percentage > existing.profit_percentage:
                    best[route.key] = route

        routes = sorted(best.values(), key=lambda r: r.profit_percentage, reverse=True)
        if routes:
            logger.info(f"Detected {len(routes)} arbitrage routes (best {routes[0].profit_percentage:.3f}% "
                        f"{routes[0].asset} {routes[0].buy.exchange} -> {routes[0].sell.exchange})")
        else:
            logger.debug("No arbitrage routes above threshold")
        return routes

    def _evaluate_pair(self, asset: str, buy_exchange: str, buy_price: float,
                       sell_exchange: str, sell_price: float, now: float) -> Optional[ArbitrageRoute]:
        """Build a route for one ordered pair if it clears the threshold."""
        if buy_price <= 0 or sell_price <= buy_price:
            return None

        buy_kind = self.registry.kind_of(buy_exchange)
        sell_kind = self.registry.kind_of(sell_exchange)
        buy_fee_rate = self.config.get_fee_rate(buy_exchange, buy_kind)
        sell_fee_rate = self.config.get_fee_rate(sell_exchange, sell_kind)

        profit_pct = net_profit_percentage(buy_price, sell_price, buy_fee_rate, sell_fee_rate)
        logger.debug(f"{asset} {buy_exchange}@{buy_price:.6f} -> {sell_exchange}@{sell_price:.6f}: "
                     f"net {profit_pct:.4f}%")
        if not math.isfinite(profit_pct) or profit_pct < self.min_profit_pct:
            return None

        amount = self.trade_amount
        profit_amount = net_profit_per_unit(buy_price, sell_price, buy_fee_rate, sell_fee_rate) * amount
        buy_ref = VenueRef(buy_exchange, buy_kind)
        sell_ref = VenueRef(sell_exchange, sell_kind)

        return ArbitrageRoute(
            id=self._next_route_id(now),
            asset=asset,
            buy=RouteLeg(
                exchange=buy_exchange,
                kind=buy_kind,
                side=TradeSide.BUY,
                expected_price=buy_price,
                amount=amount,
                estimated_fee=buy_price * amount * buy_fee_rate,
            ),
            sell=RouteLeg(
                exchange=sell_exchange,
                kind=sell_kind,
                side=TradeSide.SELL,
                expected_price=sell_price,
                amount=amount,
                estimated_fee=sell_price * amount * sell_fee_rate,
            ),
            profit_amount=profit_amount,
            profit_percentage=profit_pct,
            estimated_execution_ms=self.config.get_leg_latency_ms(buy_kind) + self.config.get_leg_latency_ms(sell_kind),
            risk_score=calculate_risk_score(buy_ref, sell_ref, profit_pct, self.config.scoring),
            confidence=calculate_confidence(buy_ref, sell_ref, profit_pct, self.config.scoring),
            detected_at=now,
        )


class RouteBook:
    """Latest route per (asset, buy exchange, sell exchange)."""

    def __init__(self, ttl_sec: float = 300.0):
        self.ttl_sec = ttl_sec
        self._routes: Dict[Tuple[str, str, str], ArbitrageRoute] = {}
        self._lock = threading.RLock()

    def update(self, routes: List[ArbitrageRoute]) -> None:
        """Supersede routes with this tick's results."""
        with self._lock:
            for route in routes:
                self._routes[route.key] = route

    def prune(self, now: float) -> int:
        """Drop routes older than the TTL; returns how many were dropped."""
        with self._lock:
            expired = [key for key, route in self._routes.items() if now - route.detected_at > self.ttl_sec]
            for key in expired:
                del self._routes[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired routes")
        return len(expired)

    def get(self, asset: str, buy_exchange: str, sell_exchange: str) -> Optional[ArbitrageRoute]:
        with self._lock:
            return self._routes.get((asset, buy_exchange, sell_exchange))

    def routes(self) -> List[ArbitrageRoute]:
        """All held routes, best first."""
        with self._lock:
            routes = list(self._routes.values())
        return sorted(routes, key=lambda r: r.profit_percentage, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)


def get_route_summary(routes: List[ArbitrageRoute]) -> Dict[str, Any]:
    """Get summary of detected routes."""
    if not routes:
        return {
            'count': 0,
            'total_profit': 0,
            'avg_profit_pct': 0,
            'avg_risk_score': 0,
            'avg_confidence': 0,
            'top_routes': [],
        }

    total_profit = sum(r.profit_amount for r in routes)

    return {
        'count': len(routes),
        'total_profit': total_profit,
        'avg_profit_pct': sum(r.profit_percentage for r in routes) / len(routes),
        'avg_risk_score': sum(r.risk_score for r in routes) / len(routes),
        'avg_confidence': sum(r.confidence for r in routes) / len(routes),
        'dex_legs': sum((r.buy.kind == VenueKind.DEX) + (r.sell.kind == VenueKind.DEX) for r in routes),
        'top_routes': [
            {
                'asset': r.asset,
                'buy': r.buy.exchange,
                'sell': r.sell.exchange,
                'profit_pct': r.profit_percentage,
                'profit': r.profit_amount,
                'risk_score': r.risk_score,
                'confidence': r.confidence,
            }
            for r in sorted(routes, key=lambda r: r.profit_percentage, reverse=True)[:5]
        ],
    }
