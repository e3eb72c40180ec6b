"""Arbitrage service: the engine's public entry point."""

from typing import Dict, List, Optional, Any
from loguru import logger

from defi_arb.config import Config
from defi_arb.core.clock import SystemClock
from defi_arb.core.exceptions import ConfigError
from defi_arb.core.detector import ArbitrageDetector, RouteBook, get_route_summary
from defi_arb.core.executor import ArbitrageExecutor, ExecutionSlots
from defi_arb.core.monitor import MonitoringLoop
from defi_arb.core.performance import PerformanceAggregator, PerformanceMetrics
from defi_arb.core.quotes import PriceCache, PriceSampler, SamplingReport
from defi_arb.core.sync import OpportunityStoreSync, SyncResult
from defi_arb.core.types import ArbitrageRoute, ExecutionSummary
from defi_arb.exchanges.registry import ExchangeRegistry, build_exchanges
from defi_arb.storage.base import OpportunityStore
from defi_arb.storage.db import SqliteOpportunityStore
from defi_arb.storage.memory import InMemoryOpportunityStore
from defi_arb.storage.models import ArbitrageOpportunity


class ArbitrageService:
    """Wires sampling, detection, sync and execution together."""

    def __init__(self, config: Config, registry: ExchangeRegistry, store: OpportunityStore, clock=None):
        self.config = config
        self.registry = registry
        self.store = store
        self.clock = clock or SystemClock()

        self.cache = PriceCache(self.clock)
        self.sampler = PriceSampler(registry, self.cache, config.assets, config.monitor.sample_timeout_sec)
        self.detector = ArbitrageDetector(config, registry, self.clock)
        self.route_book = RouteBook(config.monitor.route_ttl_sec)
        self.store_sync = OpportunityStoreSync(store, config.detector.profit_tolerance_pct, self.clock)
        self.executor = ArbitrageExecutor(
            config, registry, self.cache, store,
            route_book=self.route_book,
            slots=ExecutionSlots(config.execution.max_concurrent_executions),
            clock=self.clock,
        )
        self.performance = PerformanceAggregator(config.performance.recent_window)
        self.monitor = MonitoringLoop(self.refresh, config.monitor.interval_sec, self.clock)

        self.last_sampling: Optional[SamplingReport] = None
        self.last_sync: Optional[SyncResult] = None
        self.last_routes: List[ArbitrageRoute] = []

    async def open(self) -> None:
        """Open storage connections."""
        if isinstance(self.store, SqliteOpportunityStore) and self.store.connection is None:
            await self.store.connect()

    async def close(self) -> None:
        """Stop monitoring and release adapters and storage."""
        await self.stop_monitoring()
        await self.registry.close_all()
        await self.store.close()

    async def refresh(self) -> None:
        """One monitoring tick: sample, detect, update routes, sync the store."""
        self.last_sampling = await self.sampler.sample()
        now = self.clock.time()
        routes = self.detector.detect_routes(self.cache, now)
        self.route_book.update(routes)
        self.route_book.prune(now)
        self.last_routes = routes
        self.last_sync = await self.store_sync.sync(routes)

    def start_monitoring(self) -> bool:
        """Start the periodic loop; must be called from a running event loop."""
        started = self.monitor.start()
        if started:
            logger.info(f"Monitoring {len(self.registry)} exchanges for {len(self.config.assets)} assets")
        return started

    async def stop_monitoring(self) -> bool:
        return await self.monitor.stop()

    async def get_opportunities(self, active_only: bool = False) -> List[ArbitrageOpportunity]:
        """Persisted opportunities; refreshed first when the loop is not running."""
        if not self.monitor.running:
            await self.monitor.run_once()
        return await self.store.list_opportunities(active_only=active_only)

    async def detect_new_opportunities(self) -> List[ArbitrageOpportunity]:
        """Force a tick and return the persisted opportunities."""
        await self.monitor.run_once()
        return await self.store.list_opportunities()

    async def execute_trade(self, opportunity_id: int) -> ExecutionSummary:
        """Execute a persisted opportunity. See ArbitrageExecutor.execute for errors."""
        return await self.executor.execute(opportunity_id)

    def get_routes(self) -> List[ArbitrageRoute]:
        """Routes currently held in the route book, best first."""
        return self.route_book.routes()

    def get_performance_metrics(self) -> PerformanceMetrics:
        metrics = self.performance.aggregate(self.executor.history)
        metrics.monitored_exchanges = len(self.registry)
        metrics.monitored_assets = len(self.config.assets)
        metrics.active_routes = len(self.route_book)
        return metrics

    def get_status(self) -> Dict[str, Any]:
        """Get service status."""
        return {
            'monitoring': self.monitor.running,
            'ticks': self.monitor.ticks,
            'tick_errors': self.monitor.errors,
            'last_error': self.monitor.last_error,
            'cache': self.cache.summary(),
            'exchanges': self.registry.get_status_summary(),
            'routes': get_route_summary(self.route_book.routes()),
            'executions': self.executor.get_execution_summary(),
        }


def build_store(config: Config) -> OpportunityStore:
    """Create the configured opportunity store."""
    backend = config.storage.backend.lower()
    if backend == "sqlite":
        return SqliteOpportunityStore(config.storage.db_path)
    if backend == "memory":
        return InMemoryOpportunityStore()
    raise ConfigError(f"Unknown storage backend '{config.storage.backend}'")


def build_service(config: Config, registry: Optional[ExchangeRegistry] = None,
                  store: Optional[OpportunityStore] = None, clock=None) -> ArbitrageService:
    """Build a service from configuration; collaborators may be injected."""
    return ArbitrageService(
        config,
        registry if registry is not None else build_exchanges(config),
        store if store is not None else build_store(config),
        clock=clock,
    )
