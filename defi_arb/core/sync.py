"""Reconcile detected routes with persisted opportunities."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple
from loguru import logger

from defi_arb.core.clock import SystemClock
from defi_arb.core.types import ArbitrageRoute
from defi_arb.storage.base import OpportunityStore
from defi_arb.storage.models import ArbitrageOpportunity, OpportunityStatus, OPEN_STATUSES


def within_profit_tolerance(a: float, b: float, tolerance: float = 0.1) -> bool:
    """Whether two profit percentages describe the same opportunity."""
    return abs(a - b) <= tolerance


@dataclass
class SyncResult:
    """Writes performed by one sync pass."""
    created: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    deactivated: List[int] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deactivated)


def _opportunity_from_route(route: ArbitrageRoute, now: float) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        asset=route.asset,
        buy_exchange=route.buy.exchange,
        sell_exchange=route.sell.exchange,
        buy_price=route.buy.expected_price,
        sell_price=route.sell.expected_price,
        profit_amount=route.profit_amount,
        profit_percentage=route.profit_percentage,
        timestamp=now,
        status=OpportunityStatus.ACTIVE,
        risk_score=route.risk_score,
        confidence=route.confidence,
        buy_kind=route.buy.kind,
        sell_kind=route.sell.kind,
    )


class OpportunityStoreSync:
    """Keeps at most one open opportunity per (asset, buy, sell) in line with the detector.

    Opportunities being executed are never touched here; the executor owns
    them until it settles them.
    """

    def __init__(self, store: OpportunityStore, tolerance: float = 0.1, clock=None):
        self.store = store
        self.tolerance = tolerance
        self.clock = clock or SystemClock()

    async def sync(self, routes: List[ArbitrageRoute]) -> SyncResult:
        """Apply this tick's routes to the store."""
        now = self.clock.time()
        result = SyncResult()

        grouped: Dict[Tuple[str, str, str], List[ArbitrageOpportunity]] = {}
        for opportunity in await self.store.list_opportunities():
            if opportunity.status in OPEN_STATUSES:
                grouped.setdefault(opportunity.key, []).append(opportunity)

        # One owner per triple: an executing opportunity, else the newest active one
        open_by_key: Dict[Tuple[str, str, str], ArbitrageOpportunity] = {}
        for key, candidates in grouped.items():
            executing = [o for o in candidates if o.status == OpportunityStatus.EXECUTING]
            owner = executing[0] if executing else candidates[0]
            open_by_key[key] = owner
            for duplicate in candidates:
                if duplicate is not owner and duplicate.is_active:
                    await self._deactivate(duplicate, result)

        route_keys = set()
        for route in routes:
            route_keys.add(route.key)
            existing = open_by_key.get(route.key)

            if existing is None:
                created = await self.store.create_opportunity(_opportunity_from_route(route, now))
                result.created.append(created.id)
                logger.info(f"New opportunity #{created.id}: {route.asset} {route.buy.exchange} -> "
                            f"{route.sell.exchange} {route.profit_percentage:.3f}%")
                continue

            if existing.status == OpportunityStatus.EXECUTING:
                continue

            if within_profit_tolerance(existing.profit_percentage, route.profit_percentage, self.tolerance):
                continue

            await self.store.update_opportunity(existing.id, {
                'buy_price': route.buy.expected_price,
                'sell_price': route.sell.expected_price,
                'profit_amount': route.profit_amount,
                'profit_percentage': route.profit_percentage,
                'risk_score': route.risk_score,
                'confidence': route.confidence,
                'timestamp': now,
            })
            result.updated.append(existing.id)
            logger.debug(f"Updated opportunity #{existing.id}: {existing.profit_percentage:.3f}% -> "
                         f"{route.profit_percentage:.3f}%")

        for key, opportunity in open_by_key.items():
            if key not in route_keys and opportunity.is_active:
                await self._deactivate(opportunity, result)

        if result.writes:
            logger.info(f"Opportunity sync: {len(result.created)} created, {len(result.updated)} updated, "
                        f"{len(result.deactivated)} deactivated")
        return result

    async def _deactivate(self, opportunity: ArbitrageOpportunity, result: SyncResult) -> None:
        """Mark inactive unless the executor claimed it in the meantime."""
        if await self.store.compare_and_set_status(
            opportunity.id, OpportunityStatus.ACTIVE, OpportunityStatus.INACTIVE
        ):
            result.deactivated.append(opportunity.id)
            logger.debug(f"Deactivated opportunity #{opportunity.id} ({opportunity.asset} "
                         f"{opportunity.buy_exchange} -> {opportunity.sell_exchange})")
