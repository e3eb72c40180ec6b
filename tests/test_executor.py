"""Test trade execution, revalidation and the slot limiter."""

import asyncio

import pytest

from defi_arb.core.exceptions import (
    LegFailure,
    NoLongerProfitable,
    OpportunityNotFound,
    StaleOpportunity,
    Throttled,
)
from defi_arb.core.executor import ExecutionSlots
from defi_arb.core.types import ExecutionState, ExecutionSummary, TradeSide, VenueKind
from defi_arb.storage.models import OpportunityStatus

from fakes import ScriptedExchange, make_service, settle


def eth_pair(kind=VenueKind.CEX):
    x = ScriptedExchange("X", kind, prices={"ETH": 3200.0})
    y = ScriptedExchange("Y", kind, prices={"ETH": 3215.0})
    return x, y


async def detect_one(service) -> int:
    opportunities = await service.detect_new_opportunities()
    assert len(opportunities) == 1
    return opportunities[0].id


class TestExecutionSlots:
    """Test the concurrency limiter."""

    def test_acquire_up_to_limit(self):
        slots = ExecutionSlots(2)
        assert slots.try_acquire()
        assert slots.try_acquire()
        assert not slots.try_acquire()
        assert slots.in_flight == 2
        assert slots.peak == 2

    def test_release_frees_slot(self):
        slots = ExecutionSlots(1)
        slots.try_acquire()
        slots.release()
        assert slots.available == 1
        assert slots.try_acquire()

    def test_over_release_rejected(self):
        with pytest.raises(RuntimeError):
            ExecutionSlots(1).release()

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            ExecutionSlots(0)


class TestSuccessfulExecution:
    """Test the happy path."""

    def test_profit_accounting(self):
        """Test buy at 3202 (fee 3.20) and sell at 3214 (fee 3.21) nets 5.59."""
        x, y = eth_pair()
        x.trade_script[TradeSide.BUY] = {'price': 3202.0, 'fee': 3.20}
        y.trade_script[TradeSide.SELL] = {'price': 3214.0, 'fee': 3.21}
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            summary = await service.execute_trade(opportunity_id)
            return opportunity_id, summary, await service.store.get_opportunity(opportunity_id)

        opportunity_id, summary, opportunity = asyncio.run(scenario())

        assert summary.success is True
        assert summary.state == ExecutionState.SETTLED
        assert summary.actual_profit == pytest.approx(5.59)
        assert summary.gas_cost == 0.0
        assert summary.net_profit == pytest.approx(5.59)
        assert summary.expected_profit == pytest.approx(8.585)
        assert summary.profit_difference == pytest.approx(5.59 - 8.585)
        assert [leg.side for leg in summary.legs] == [TradeSide.BUY, TradeSide.SELL]
        assert all(leg.success and leg.tx_id for leg in summary.legs)
        assert summary.route_id.startswith("route-")
        assert summary.end_time >= summary.start_time

        assert opportunity.status == OpportunityStatus.EXECUTED
        assert not opportunity.is_active
        assert opportunity.actual_profit == pytest.approx(5.59)
        assert opportunity.actual_profit_percentage == pytest.approx(5.59 / 3202 * 100)
        assert opportunity.executed_at is not None

        assert service.executor.history == [summary]
        assert service.executor.slots.in_flight == 0

    def test_dex_gas_cost(self):
        """Test DEX legs carry the flat network cost."""
        x = ScriptedExchange("X", VenueKind.DEX, prices={"ETH": 3000.0})
        y = ScriptedExchange("Y", VenueKind.DEX, prices={"ETH": 3100.0})
        service = make_service([x, y])

        async def scenario():
            return await service.execute_trade(await detect_one(service))

        summary = asyncio.run(scenario())

        assert summary.gas_cost == pytest.approx(30.0)
        assert summary.net_profit == pytest.approx(summary.actual_profit - 30.0)

    def test_sell_uses_filled_amount(self):
        """Test the sell leg sells exactly what the buy leg filled."""
        x, y = eth_pair()
        x.trade_script[TradeSide.BUY] = {'price': 3200.0, 'amount': 0.6}
        service = make_service([x, y])

        async def scenario():
            return await service.execute_trade(await detect_one(service))

        summary = asyncio.run(scenario())

        assert y.trade_calls == [("ETH", 0.6, TradeSide.SELL)]
        assert summary.legs[1].amount == 0.6


class TestLegFailures:
    """Test aborted executions."""

    def test_buy_failure_skips_sell(self):
        """Test a failed buy records the error, skips the sell and frees the slot."""
        x, y = eth_pair()
        x.trade_script[TradeSide.BUY] = {'success': False, 'error': "insufficient liquidity"}
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            with pytest.raises(LegFailure) as exc_info:
                await service.execute_trade(opportunity_id)
            return exc_info.value, await service.store.get_opportunity(opportunity_id)

        error, opportunity = asyncio.run(scenario())

        assert error.leg == "buy"
        summary = error.summary
        assert isinstance(summary, ExecutionSummary)
        assert summary.success is False
        assert summary.state == ExecutionState.ABORTED
        assert len(summary.legs) == 1
        assert summary.legs[0].error == "insufficient liquidity"
        assert "insufficient liquidity" in summary.error
        assert summary.net_profit == 0.0
        assert y.trade_calls == []
        assert service.executor.slots.in_flight == 0
        assert service.executor.history == [summary]
        assert opportunity.status == OpportunityStatus.FAILED

    def test_sell_failure(self):
        """Test a failed sell is recorded after a filled buy."""
        x, y = eth_pair()
        y.trade_script[TradeSide.SELL] = {'success': False, 'error': "rejected"}
        service = make_service([x, y])

        async def scenario():
            with pytest.raises(LegFailure) as exc_info:
                await service.execute_trade(await detect_one(service))
            return exc_info.value

        error = asyncio.run(scenario())

        assert error.leg == "sell"
        assert [leg.success for leg in error.summary.legs] == [True, False]
        assert service.executor.slots.in_flight == 0

    def test_adapter_exception(self):
        """Test an adapter raising mid-trade counts as a leg failure."""
        x, y = eth_pair()
        x.trade_script[TradeSide.BUY] = ConnectionError("socket closed")
        service = make_service([x, y])

        async def scenario():
            with pytest.raises(LegFailure) as exc_info:
                await service.execute_trade(await detect_one(service))
            return exc_info.value

        error = asyncio.run(scenario())

        assert "socket closed" in error.summary.legs[0].error
        assert "X" in error.summary.legs[0].error
        assert service.executor.slots.in_flight == 0

    def test_deadline(self):
        """Test a leg exceeding the execution budget is aborted."""
        x, y = eth_pair()
        x.trade_delay = 1.0
        service = make_service([x, y], max_execution_time_ms=50)

        async def scenario():
            with pytest.raises(LegFailure) as exc_info:
                await service.execute_trade(await detect_one(service))
            return exc_info.value

        error = asyncio.run(scenario())

        assert "Timed out" in error.summary.legs[0].error
        assert y.trade_calls == []
        assert service.executor.slots.in_flight == 0


class TestRejections:
    """Test requests refused before any trade is placed."""

    def test_not_found(self):
        x, y = eth_pair()
        service = make_service([x, y])

        with pytest.raises(OpportunityNotFound) as exc_info:
            asyncio.run(service.execute_trade(999))

        assert exc_info.value.code == "NotFound"
        assert service.executor.history == []

    def test_already_executed(self):
        """Test executing the same opportunity twice is stale the second time."""
        x, y = eth_pair()
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            await service.execute_trade(opportunity_id)
            await service.execute_trade(opportunity_id)

        with pytest.raises(StaleOpportunity):
            asyncio.run(scenario())
        assert len(service.executor.history) == 1

    def test_spread_gone(self):
        """Test revalidation against fresh prices rejects a vanished spread."""
        x, y = eth_pair()
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            service.cache.update("Y", "ETH", 3201.0)
            with pytest.raises(NoLongerProfitable) as exc_info:
                await service.execute_trade(opportunity_id)
            return exc_info.value, await service.store.get_opportunity(opportunity_id)

        error, opportunity = asyncio.run(scenario())

        assert error.profit_percentage < 0.25
        assert opportunity.is_active
        assert x.trade_calls == []
        assert service.executor.slots.in_flight == 0
        assert service.executor.rejections["NoLongerProfitable"] == 1

    def test_stale_price(self):
        """Test revalidation fails when cached prices are too old."""
        x, y = eth_pair()
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            service.clock.advance(service.config.price_max_age_sec + 1)
            with pytest.raises(NoLongerProfitable) as exc_info:
                await service.execute_trade(opportunity_id)
            return exc_info.value

        error = asyncio.run(scenario())

        assert error.profit_percentage is None
        assert x.trade_calls == []

    def test_concurrent_requests_for_same_opportunity(self):
        """Test only one of two simultaneous requests executes."""
        x, y = eth_pair()
        service = make_service([x, y])

        async def scenario():
            opportunity_id = await detect_one(service)
            x.gate = asyncio.Event()
            tasks = [asyncio.ensure_future(service.execute_trade(opportunity_id)) for _ in range(2)]
            await settle()
            x.gate.set()
            return await asyncio.gather(*tasks, return_exceptions=True)

        results = asyncio.run(scenario())

        assert sum(isinstance(r, ExecutionSummary) for r in results) == 1
        assert sum(isinstance(r, StaleOpportunity) for r in results) == 1
        assert len(x.trade_calls) == 1


class TestThrottling:
    """Test the concurrency limit."""

    def test_fourth_request_throttled(self):
        """Test four concurrent requests against three slots reject exactly one."""
        assets = ("ETH", "BTC", "SOL", "AVAX")
        x = ScriptedExchange("X", prices={"ETH": 3200.0, "BTC": 65000.0, "SOL": 100.0, "AVAX": 34.0})
        y = ScriptedExchange("Y", prices={"ETH": 3215.0, "BTC": 65300.0, "SOL": 100.5, "AVAX": 34.2})
        service = make_service([x, y], assets=assets, max_concurrent=3)

        async def scenario():
            opportunities = await service.detect_new_opportunities()
            ids = [o.id for o in opportunities]
            assert len(ids) == 4

            x.gate = asyncio.Event()
            tasks = [asyncio.ensure_future(service.execute_trade(i)) for i in ids]
            await settle()
            in_flight = service.executor.slots.in_flight
            x.gate.set()
            results = await asyncio.gather(*tasks, return_exceptions=True)

            throttled = [i for i, r in zip(ids, results) if isinstance(r, Throttled)]
            retry = await service.execute_trade(throttled[0]) if len(throttled) == 1 else None
            return in_flight, results, retry

        in_flight, results, retry = asyncio.run(scenario())

        assert in_flight == 3
        assert sum(isinstance(r, Throttled) for r in results) == 1
        assert sum(isinstance(r, ExecutionSummary) and r.success for r in results) == 3
        assert retry is not None and retry.success
        assert service.executor.slots.in_flight == 0
        assert service.executor.slots.peak == 3
        assert service.executor.rejections["Throttled"] == 1
