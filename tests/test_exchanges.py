"""Test exchange adapters, fees and the registry."""

import asyncio

import pytest

from defi_arb.config import Config, ExchangeEntry, SimulationConfig
from defi_arb.core.exceptions import ConfigError
from defi_arb.core.types import ConnectionStatus, TradeSide, VenueKind
from defi_arb.exchanges import ExchangeRegistry, FeeSchedule, SimulatedExchange, build_exchanges, create_exchange

from fakes import ScriptedExchange


def instant_sim(**kwargs):
    params = dict(seed=7, min_latency_ms=0, max_latency_ms=0, success_rate=1.0)
    params.update(kwargs)
    return SimulationConfig(**params)


class TestRegistry:
    """Test building and querying the registry."""

    def test_build_default(self):
        registry = build_exchanges(Config())

        assert len(registry) == 16
        assert all(isinstance(e, SimulatedExchange) for e in registry)
        assert "Uniswap" in registry
        assert registry.kind_of("Uniswap") == VenueKind.DEX
        assert registry.kind_of("Binance") == VenueKind.CEX
        assert registry.kind_of("Nowhere") is None

    def test_duplicate_name(self):
        with pytest.raises(ConfigError):
            ExchangeRegistry([ScriptedExchange("X"), ScriptedExchange("X")])

    def test_unknown_adapter(self):
        entry = ExchangeEntry(name="X", kind=VenueKind.CEX, adapter="carrier-pigeon")
        with pytest.raises(ConfigError):
            create_exchange(entry, Config())

    def test_names_keep_order(self):
        registry = ExchangeRegistry([ScriptedExchange("B"), ScriptedExchange("A")])

        assert registry.names() == ["B", "A"]

    def test_status_summary(self):
        x = ScriptedExchange("X", VenueKind.DEX)
        x.mark_status(ConnectionStatus.ERROR)
        assert not x.is_connected()

        summary = ExchangeRegistry([x]).get_status_summary()

        assert summary == [{'name': "X", 'kind': "DEX", 'status': ConnectionStatus.ERROR.value}]


class TestFeeSchedule:
    """Test fee and gas estimates."""

    def test_fee_amount(self):
        fees = FeeSchedule(Config())

        assert fees.calculate_fee_amount("Uniswap", VenueKind.DEX, 3000.0) == pytest.approx(9.0)
        assert fees.calculate_fee_amount("Binance", VenueKind.CEX, 3000.0) == pytest.approx(3.0)

    def test_route_gas(self):
        fees = FeeSchedule(Config())

        assert fees.route_gas_cost(VenueKind.DEX, VenueKind.DEX) == 30.0
        assert fees.route_gas_cost(VenueKind.CEX, VenueKind.DEX) == 15.0
        assert fees.route_gas_cost(VenueKind.CEX, VenueKind.CEX) == 0.0


class TestSimulatedExchange:
    """Test the simulated venue."""

    def test_seeded_prices_reproducible(self):
        first = SimulatedExchange("Uniswap", VenueKind.DEX, instant_sim(), fee_rate=0.003, bias=0.001, seed=7)
        second = SimulatedExchange("Uniswap", VenueKind.DEX, instant_sim(), fee_rate=0.003, bias=0.001, seed=7)

        assert asyncio.run(first.get_prices(["ETH", "BTC"])) == asyncio.run(second.get_prices(["ETH", "BTC"]))

    def test_prices_near_baseline(self):
        sim = instant_sim()
        exchange = SimulatedExchange("Binance", VenueKind.CEX, sim, fee_rate=0.001, bias=0.0, seed=1)

        prices = asyncio.run(exchange.get_prices(["ETH", "DOGE"]))

        assert set(prices) == {"ETH"}
        baseline = sim.baseline_prices["ETH"]
        assert abs(prices["ETH"] - baseline) <= baseline * sim.price_jitter_pct / 100 + 1e-9
        assert exchange.get_last_update() > 0

    def test_trade_applies_slippage_and_fee(self):
        exchange = SimulatedExchange("Binance", VenueKind.CEX, instant_sim(), fee_rate=0.001, seed=1)

        async def scenario():
            quoted = (await exchange.get_prices(["ETH"]))["ETH"]
            buy = await exchange.execute_trade("ETH", 1.0, TradeSide.BUY)
            sell = await exchange.execute_trade("ETH", 1.0, TradeSide.SELL)
            return quoted, buy, sell

        quoted, buy, sell = asyncio.run(scenario())

        assert buy.success and sell.success
        assert buy.price == pytest.approx(quoted * 1.0005)
        assert sell.price == pytest.approx(quoted * 0.9995)
        assert buy.fee == pytest.approx(buy.price * 0.001)
        assert buy.tx_id.startswith("tx-")
        assert buy.tx_id != sell.tx_id

    def test_large_order_slippage(self):
        exchange = SimulatedExchange("Binance", VenueKind.CEX, instant_sim(), fee_rate=0.001, seed=1)

        async def scenario():
            quoted = (await exchange.get_prices(["SOL"]))["SOL"]
            return quoted, await exchange.execute_trade("SOL", 50.0, TradeSide.BUY)

        quoted, result = asyncio.run(scenario())

        assert result.price == pytest.approx(quoted * 1.002)

    def test_trade_failure(self):
        exchange = SimulatedExchange("Binance", VenueKind.CEX, instant_sim(success_rate=0.0), fee_rate=0.001, seed=1)

        result = asyncio.run(exchange.execute_trade("ETH", 1.0, TradeSide.BUY))

        assert result.success is False
        assert result.tx_id is None
        assert "market conditions" in result.error

    def test_unlisted_asset(self):
        exchange = SimulatedExchange("Binance", VenueKind.CEX, instant_sim(), fee_rate=0.001, seed=1)

        result = asyncio.run(exchange.execute_trade("DOGE", 1.0, TradeSide.BUY))

        assert result.success is False
        assert "DOGE" in result.error
