"""Test reconciliation of routes with the opportunity store."""

import asyncio

import pytest

from defi_arb.core.clock import ManualClock
from defi_arb.core.sync import OpportunityStoreSync, within_profit_tolerance
from defi_arb.storage.models import ArbitrageOpportunity, OpportunityStatus

from fakes import CountingStore, make_route, START_TIME


def build_sync():
    store = CountingStore()
    clock = ManualClock(START_TIME)
    return OpportunityStoreSync(store, tolerance=0.1, clock=clock), store, clock


class TestTolerance:
    """Test the profit tolerance comparison."""

    def test_within(self):
        assert within_profit_tolerance(0.30, 0.35)
        assert within_profit_tolerance(0.35, 0.30)
        assert within_profit_tolerance(0.30, 0.40, tolerance=0.1 + 1e-9)

    def test_outside(self):
        assert not within_profit_tolerance(0.30, 0.45)
        assert not within_profit_tolerance(0.30, 0.31, tolerance=0.0)


class TestOpportunityStoreSync:
    """Test create, update and deactivate rules."""

    def test_creates_new_opportunities(self):
        """Test each unseen route becomes an active opportunity."""
        sync, store, _ = build_sync()
        routes = [make_route("ETH", "X", "Y", 0.3), make_route("SOL", "X", "Y", 0.4)]

        result = asyncio.run(sync.sync(routes))
        opportunities = asyncio.run(store.list_opportunities())

        assert len(result.created) == 2
        assert len(opportunities) == 2
        assert all(o.is_active for o in opportunities)
        eth = next(o for o in opportunities if o.asset == "ETH")
        assert eth.buy_exchange == "X"
        assert eth.sell_exchange == "Y"
        assert eth.profit_percentage == pytest.approx(0.3)
        assert eth.timestamp == START_TIME

    def test_idempotent(self):
        """Test syncing identical routes twice writes nothing the second time."""
        sync, store, _ = build_sync()
        routes = [make_route("ETH", "X", "Y", 0.3), make_route("SOL", "X", "Y", 0.4)]

        asyncio.run(sync.sync(routes))
        writes_after_first = store.writes
        result = asyncio.run(sync.sync(routes))

        assert result.writes == 0
        assert store.writes == writes_after_first

    def test_noise_within_tolerance_ignored(self):
        """Test small profit changes do not rewrite the opportunity."""
        sync, store, clock = build_sync()
        asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.30)]))
        clock.advance(5)

        result = asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.35)]))
        opportunity = asyncio.run(store.list_opportunities())[0]

        assert result.writes == 0
        assert opportunity.profit_percentage == pytest.approx(0.30)
        assert opportunity.timestamp == START_TIME

    def test_material_change_updates(self):
        """Test a profit move beyond tolerance updates fields and timestamp."""
        sync, store, clock = build_sync()
        asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.30)]))
        clock.advance(5)

        route = make_route("ETH", "X", "Y", 0.60, buy_price=100.0, sell_price=101.5)
        result = asyncio.run(sync.sync([route]))
        opportunities = asyncio.run(store.list_opportunities())

        assert len(result.updated) == 1
        assert len(opportunities) == 1
        assert opportunities[0].profit_percentage == pytest.approx(0.60)
        assert opportunities[0].sell_price == 101.5
        assert opportunities[0].timestamp == START_TIME + 5

    def test_missing_route_deactivates(self):
        """Test an opportunity whose route disappears becomes inactive."""
        sync, store, _ = build_sync()
        asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.3), make_route("SOL", "X", "Y", 0.4)]))

        result = asyncio.run(sync.sync([make_route("SOL", "X", "Y", 0.4)]))
        opportunities = {o.asset: o for o in asyncio.run(store.list_opportunities())}

        assert len(result.deactivated) == 1
        assert opportunities["ETH"].status == OpportunityStatus.INACTIVE
        assert opportunities["SOL"].is_active

    def test_reappearing_route_creates_fresh_opportunity(self):
        """Test a route that comes back after deactivation gets a new record."""
        sync, store, _ = build_sync()
        asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.3)]))
        asyncio.run(sync.sync([]))
        result = asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.3)]))

        opportunities = asyncio.run(store.list_opportunities())
        assert len(result.created) == 1
        assert [o.is_active for o in opportunities].count(True) == 1
        assert len(opportunities) == 2

    def test_executing_untouched(self):
        """Test an executing opportunity is neither deactivated nor duplicated."""
        sync, store, _ = build_sync()
        asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.3)]))
        opportunity_id = asyncio.run(store.list_opportunities())[0].id
        asyncio.run(store.compare_and_set_status(
            opportunity_id, OpportunityStatus.ACTIVE, OpportunityStatus.EXECUTING
        ))

        gone = asyncio.run(sync.sync([]))
        back = asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.9)]))
        opportunities = asyncio.run(store.list_opportunities())

        assert gone.writes == 0
        assert back.writes == 0
        assert len(opportunities) == 1
        assert opportunities[0].status == OpportunityStatus.EXECUTING
        assert opportunities[0].profit_percentage == pytest.approx(0.3)

    def test_duplicate_actives_collapsed(self):
        """Test only one active opportunity survives per triple."""
        sync, store, _ = build_sync()
        for timestamp in (START_TIME - 10, START_TIME - 5):
            asyncio.run(store.create_opportunity(ArbitrageOpportunity(
                asset="ETH", buy_exchange="X", sell_exchange="Y",
                buy_price=100.0, sell_price=101.0, profit_percentage=0.3, timestamp=timestamp,
            )))

        result = asyncio.run(sync.sync([make_route("ETH", "X", "Y", 0.3)]))
        active = asyncio.run(store.list_opportunities(active_only=True))

        assert len(result.deactivated) == 1
        assert len(active) == 1
        assert active[0].timestamp == START_TIME - 5
