"""Exchange registry and adapter factory."""

from typing import Dict, List, Optional, Any, Iterator
from loguru import logger

from defi_arb.config import Config, ExchangeEntry
from defi_arb.core.exceptions import ConfigError
from defi_arb.core.types import VenueKind
from .base import BaseExchange
from .simulated import SimulatedExchange


class ExchangeRegistry:
    """Ordered set of monitored exchanges keyed by name."""

    def __init__(self, exchanges: Optional[List[BaseExchange]] = None):
        self._exchanges: Dict[str, BaseExchange] = {}
        for exchange in exchanges or []:
            self.register(exchange)

    def register(self, exchange: BaseExchange) -> None:
        """Register an exchange. Names must be unique."""
        if exchange.name in self._exchanges:
            raise ConfigError(f"Exchange registered twice: {exchange.name}")
        self._exchanges[exchange.name] = exchange

    def get(self, name: str) -> Optional[BaseExchange]:
        """Get an exchange by name."""
        return self._exchanges.get(name)

    def kind_of(self, name: str) -> Optional[VenueKind]:
        """Venue kind of a registered exchange."""
        exchange = self._exchanges.get(name)
        return exchange.kind if exchange else None

    def names(self) -> List[str]:
        """Names in registration order."""
        return list(self._exchanges)

    def __iter__(self) -> Iterator[BaseExchange]:
        return iter(self._exchanges.values())

    def __len__(self) -> int:
        return len(self._exchanges)

    def __contains__(self, name: str) -> bool:
        return name in self._exchanges

    def get_status_summary(self) -> List[Dict[str, Any]]:
        """Connection status of every exchange."""
        return [
            {
                'name': exchange.name,
                'kind': exchange.kind.value,
                'status': exchange.connection_status.value,
            }
            for exchange in self._exchanges.values()
        ]

    async def close_all(self) -> None:
        """Close every adapter."""
        for exchange in self._exchanges.values():
            await exchange.close()


def create_exchange(entry: ExchangeEntry, config: Config) -> BaseExchange:
    """Create an exchange adapter based on its configured implementation."""
    adapter = entry.adapter.lower()
    fee_rate = config.get_fee_rate(entry.name, entry.kind)

    if adapter == "simulated":
        return SimulatedExchange(
            entry.name,
            entry.kind,
            config.simulation,
            fee_rate=fee_rate,
            bias=entry.bias,
            seed=config.simulation.seed,
        )

    elif adapter == "ccxt":
        # Imported lazily so simulated runs never load ccxt
        from .ccxt_exchange import CcxtExchange
        return CcxtExchange(entry, fee_rate)

    raise ConfigError(f"Unknown adapter '{entry.adapter}' for exchange {entry.name}")


def build_exchanges(config: Config) -> ExchangeRegistry:
    """Build the registry of monitored exchanges from configuration."""
    registry = ExchangeRegistry()
    for entry in config.exchanges:
        registry.register(create_exchange(entry, config))

    dex_count = sum(1 for e in registry if e.kind == VenueKind.DEX)
    logger.info(f"Registered {len(registry)} exchanges ({dex_count} DEX, {len(registry) - dex_count} CEX)")
    for exchange in registry:
        logger.debug(f"  - {exchange.name}: {exchange.kind.value} via {type(exchange).__name__}")
    return registry
