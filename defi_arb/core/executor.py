"""Arbitrage trade execution across exchanges."""

import asyncio
import math
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Any
from loguru import logger

from defi_arb.config import Config
from defi_arb.core.clock import SystemClock
from defi_arb.core.detector import RouteBook, net_profit_per_unit, net_profit_percentage
from defi_arb.core.exceptions import (
    AdapterUnavailable,
    ExecutionError,
    LegFailure,
    NoLongerProfitable,
    OpportunityNotFound,
    StaleOpportunity,
    Throttled,
)
from defi_arb.core.quotes import PriceCache
from defi_arb.core.types import ExecutionState, ExecutionSummary, LegResult, TradeSide, VenueKind
from defi_arb.exchanges.base import BaseExchange
from defi_arb.exchanges.fees import FeeSchedule
from defi_arb.exchanges.registry import ExchangeRegistry
from defi_arb.storage.base import OpportunityStore
from defi_arb.storage.models import ArbitrageOpportunity, OpportunityStatus


class ExecutionSlots:
    """Non-blocking limit on concurrent executions.

    Confined to the event loop thread: acquire and release never await, so
    no lock is taken.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Slot limit must be at least 1, got {limit}")
        self.limit = limit
        self.in_flight = 0
        self.peak = 0

    def try_acquire(self) -> bool:
        """Take a slot if one is free."""
        if self.in_flight >= self.limit:
            return False
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return True

    def release(self) -> None:
        """Return a slot taken with ``try_acquire``."""
        if self.in_flight <= 0:
            raise RuntimeError("Execution slot released more times than acquired")
        self.in_flight -= 1

    @property
    def available(self) -> int:
        return self.limit - self.in_flight


class ArbitrageExecutor:
    """Executes persisted opportunities as a buy leg followed by a sell leg.

    The executor is the only writer of execution summaries and the only
    component that moves an opportunity out of ``executing``.
    """

    def __init__(self, config: Config, registry: ExchangeRegistry, cache: PriceCache,
                 store: OpportunityStore, route_book: Optional[RouteBook] = None,
                 slots: Optional[ExecutionSlots] = None, clock=None):
        self.config = config
        self.registry = registry
        self.cache = cache
        self.store = store
        self.route_book = route_book
        self.fees = FeeSchedule(config)
        self.slots = slots or ExecutionSlots(config.execution.max_concurrent_executions)
        self.clock = clock or SystemClock()
        self.max_execution_time_ms = config.execution.max_execution_time_ms
        self._history: List[ExecutionSummary] = []
        self.rejections: Counter = Counter()

    @property
    def history(self) -> List[ExecutionSummary]:
        """Execution summaries in the order they were recorded."""
        return list(self._history)

    def _reject(self, error: ExecutionError) -> ExecutionError:
        self.rejections[error.code] += 1
        logger.warning(f"Execution rejected ({error.code}): {error}")
        return error

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock.time(), tz=timezone.utc)

    async def execute(self, opportunity_id: int) -> ExecutionSummary:
        """Execute an opportunity by id.

        Raises OpportunityNotFound, StaleOpportunity, NoLongerProfitable or
        Throttled before any trade is placed, and LegFailure (carrying the
        recorded summary) when a leg fails.
        """
        logger.info(f"Execution requested for opportunity #{opportunity_id}")

        opportunity = await self.store.get_opportunity(opportunity_id)
        if opportunity is None:
            raise self._reject(OpportunityNotFound(opportunity_id))
        if not opportunity.is_active:
            raise self._reject(StaleOpportunity(opportunity_id, opportunity.status.value))

        buy_kind, sell_kind, buy_price, sell_price, profit_pct = self._revalidate(opportunity)

        if not self.slots.try_acquire():
            raise self._reject(Throttled(opportunity_id, self.slots.limit))

        try:
            if not await self.store.compare_and_set_status(
                opportunity_id, OpportunityStatus.ACTIVE, OpportunityStatus.EXECUTING
            ):
                current = await self.store.get_opportunity(opportunity_id)
                status = current.status.value if current else "missing"
                raise self._reject(StaleOpportunity(opportunity_id, status))

            expected_profit = net_profit_per_unit(
                buy_price, sell_price,
                self.fees.get_taker_fee_rate(opportunity.buy_exchange, buy_kind),
                self.fees.get_taker_fee_rate(opportunity.sell_exchange, sell_kind),
            ) * self.config.detector.trade_amount
            logger.info(f"Executing #{opportunity_id}: buy {opportunity.asset} on {opportunity.buy_exchange} "
                        f"@ {buy_price:.6f}, sell on {opportunity.sell_exchange} @ {sell_price:.6f} "
                        f"({profit_pct:.3f}%)")

            try:
                return await self._run(opportunity, buy_kind, sell_kind, buy_price, sell_price, expected_profit)
            except LegFailure:
                raise
            except Exception as e:
                logger.error(f"Execution of #{opportunity_id} failed unexpectedly: {e}")
                await self.store.compare_and_set_status(
                    opportunity_id, OpportunityStatus.EXECUTING, OpportunityStatus.FAILED
                )
                raise
        finally:
            self.slots.release()

    def _revalidate(self, opportunity: ArbitrageOpportunity) -> Tuple[VenueKind, VenueKind, float, float, float]:
        """Recompute profitability from fresh cached prices."""
        opportunity_id = opportunity.id
        buy_kind = opportunity.buy_kind or self.registry.kind_of(opportunity.buy_exchange)
        sell_kind = opportunity.sell_kind or self.registry.kind_of(opportunity.sell_exchange)
        for name in (opportunity.buy_exchange, opportunity.sell_exchange):
            if name not in self.registry:
                raise self._reject(NoLongerProfitable(opportunity_id, None, f"{name} is not a monitored exchange"))

        max_age = self.config.price_max_age_sec
        buy_price = self.cache.get_price(opportunity.buy_exchange, opportunity.asset, max_age=max_age)
        sell_price = self.cache.get_price(opportunity.sell_exchange, opportunity.asset, max_age=max_age)
        if buy_price is None or sell_price is None:
            missing = opportunity.buy_exchange if buy_price is None else opportunity.sell_exchange
            raise self._reject(NoLongerProfitable(
                opportunity_id, None, f"no fresh {opportunity.asset} price from {missing}"
            ))

        profit_pct = net_profit_percentage(
            buy_price, sell_price,
            self.fees.get_taker_fee_rate(opportunity.buy_exchange, buy_kind),
            self.fees.get_taker_fee_rate(opportunity.sell_exchange, sell_kind),
        )
        if not math.isfinite(profit_pct) or profit_pct < self.config.detector.min_profit_pct:
            raise self._reject(NoLongerProfitable(opportunity_id, profit_pct))

        return buy_kind, sell_kind, buy_price, sell_price, profit_pct

    async def _run_leg(self, exchange: BaseExchange, asset: str, amount: float, side: TradeSide,
                       expected_price: float, deadline: float) -> LegResult:
        """Place one leg within the remaining time budget."""
        leg = LegResult(exchange=exchange.name, side=side, expected_price=expected_price)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            leg.error = f"Execution deadline of {self.max_execution_time_ms}ms exceeded"
            return leg

        try:
            result = await asyncio.wait_for(exchange.execute_trade(asset, amount, side), timeout=remaining)
        except asyncio.TimeoutError:
            leg.error = f"Timed out after {self.max_execution_time_ms}ms execution budget"
            return leg
        except Exception as e:
            leg.error = str(AdapterUnavailable(exchange.name, str(e)))
            return leg

        leg.success = result.success
        leg.actual_price = result.price
        leg.amount = result.amount
        leg.fee = result.fee
        leg.tx_id = result.tx_id
        leg.error = result.error
        if leg.success and leg.amount <= 0:
            leg.success = False
            leg.error = "Trade reported success with no filled amount"
        return leg

    async def _run(self, opportunity: ArbitrageOpportunity, buy_kind: VenueKind, sell_kind: VenueKind,
                   buy_price: float, sell_price: float, expected_profit: float) -> ExecutionSummary:
        """Run both legs and settle the opportunity."""
        route = None
        if self.route_book is not None:
            route = self.route_book.get(*opportunity.key)
        summary = ExecutionSummary(
            route_id=route.id if route else f"opportunity-{opportunity.id}",
            opportunity_id=opportunity.id,
            asset=opportunity.asset,
            success=False,
            start_time=self._now(),
            end_time=self._now(),
            expected_profit=expected_profit,
            state=ExecutionState.VALIDATED,
        )
        started = time.monotonic()
        deadline = started + self.max_execution_time_ms / 1000

        summary.state = ExecutionState.LEG1_BUY
        buy_leg = await self._run_leg(
            self.registry.get(opportunity.buy_exchange), opportunity.asset,
            self.config.detector.trade_amount, TradeSide.BUY, buy_price, deadline,
        )
        summary.legs.append(buy_leg)
        if not buy_leg.success:
            return await self._abort(summary, started, "buy", buy_leg.error)

        summary.state = ExecutionState.LEG2_SELL
        sell_leg = await self._run_leg(
            self.registry.get(opportunity.sell_exchange), opportunity.asset,
            buy_leg.amount, TradeSide.SELL, sell_price, deadline,
        )
        summary.legs.append(sell_leg)
        if not sell_leg.success:
            logger.error(f"Sell leg failed after buy filled {buy_leg.amount} {opportunity.asset} "
                         f"on {opportunity.buy_exchange}; position left open")
            return await self._abort(summary, started, "sell", sell_leg.error)

        buy_cost = buy_leg.amount * buy_leg.actual_price
        actual_profit = (sell_leg.amount * sell_leg.actual_price - sell_leg.fee) - (buy_cost + buy_leg.fee)
        gas_cost = self.fees.route_gas_cost(buy_kind, sell_kind)

        summary.success = True
        summary.state = ExecutionState.SETTLED
        summary.actual_profit = actual_profit
        summary.profit_difference = actual_profit - expected_profit
        summary.gas_cost = gas_cost
        summary.net_profit = actual_profit - gas_cost
        summary.end_time = self._now()
        summary.execution_time_ms = int((time.monotonic() - started) * 1000)
        self._history.append(summary)

        settled = await self.store.compare_and_set_status(
            opportunity.id, OpportunityStatus.EXECUTING, OpportunityStatus.EXECUTED,
            {
                'executed_at': self.clock.time(),
                'actual_profit': summary.net_profit,
                'actual_profit_percentage': summary.net_profit / buy_cost * 100 if buy_cost else 0.0,
            },
        )
        if not settled:
            logger.warning(f"Opportunity #{opportunity.id} left executing state before settlement")

        logger.info(f"Executed #{opportunity.id}: net ${summary.net_profit:.4f} "
                    f"(expected ${expected_profit:.4f}, gas ${gas_cost:.2f}) in {summary.execution_time_ms}ms")
        return summary

    async def _abort(self, summary: ExecutionSummary, started: float, leg: str, error: Optional[str]):
        """Record a failed attempt and raise LegFailure."""
        summary.success = False
        summary.state = ExecutionState.ABORTED
        summary.error = f"{leg.capitalize()} leg failed: {error}"
        summary.end_time = self._now()
        summary.execution_time_ms = int((time.monotonic() - started) * 1000)
        self._history.append(summary)

        await self.store.compare_and_set_status(
            summary.opportunity_id, OpportunityStatus.EXECUTING, OpportunityStatus.FAILED
        )
        logger.error(f"Execution of #{summary.opportunity_id} aborted: {summary.error}")
        raise LegFailure(summary.opportunity_id, leg, error or "unknown error", summary)

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get executor statistics."""
        successful = sum(1 for s in self._history if s.success)
        return {
            'total_executions': len(self._history),
            'successful_executions': successful,
            'failed_executions': len(self._history) - successful,
            'in_flight': self.slots.in_flight,
            'max_concurrent': self.slots.limit,
            'peak_concurrent': self.slots.peak,
            'rejections': dict(self.rejections),
        }
