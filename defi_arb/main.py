"""Main entry point for the DeFi arbitrage engine."""

import asyncio
import json
import sys
from typing import Optional
import click
from dotenv import load_dotenv
from loguru import logger

from defi_arb.config import Config, LoggingConfig, get_config
from defi_arb.core.exceptions import ArbitrageError, ExecutionError, LegFailure
from defi_arb.core.utils import format_usd, format_percentage, format_duration_ms
from defi_arb.service import ArbitrageService, build_service


def setup_logging(logging_config: LoggingConfig, level: Optional[str] = None):
    """Configure loguru sinks."""
    logger.remove()
    logger.add(sys.stderr, level=level or logging_config.level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
    if logging_config.file:
        logger.add(logging_config.file, level="DEBUG", serialize=logging_config.serialize,
                   format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")


def load_config(config_path: Optional[str]) -> Config:
    load_dotenv()
    return get_config(config_path)


def print_opportunities(opportunities, limit: int = 20):
    active = [o for o in opportunities if o.is_active]
    print(f"\n=== ACTIVE OPPORTUNITIES ({len(active)}) ===")
    for opp in sorted(active, key=lambda o: o.profit_percentage, reverse=True)[:limit]:
        print(f"#{opp.id:<4} {opp.asset:<6} {opp.buy_exchange:>12} -> {opp.sell_exchange:<12} "
              f"buy {format_usd(opp.buy_price):>12} sell {format_usd(opp.sell_price):>12} "
              f"profit {format_percentage(opp.profit_percentage):>7} ({format_usd(opp.profit_amount)}) "
              f"risk {opp.risk_score:.0f} conf {opp.confidence:.2f}")


def print_summary(summary):
    status = "SUCCESS" if summary.success else "FAILED"
    print(f"""
=== EXECUTION {status} ===
Opportunity: #{summary.opportunity_id} ({summary.asset}, route {summary.route_id})
Expected profit: {format_usd(summary.expected_profit)}
Actual profit: {format_usd(summary.actual_profit)}
Gas cost: {format_usd(summary.gas_cost)}
Net profit: {format_usd(summary.net_profit)}
Duration: {format_duration_ms(summary.execution_time_ms)}""")
    for leg in summary.legs:
        outcome = f"tx {leg.tx_id}" if leg.success else f"error: {leg.error}"
        print(f"  {leg.side.value:<4} {leg.exchange:<12} {leg.amount} @ {leg.actual_price:.6f} "
              f"fee {leg.fee:.4f} ({outcome})")


def print_metrics(service: ArbitrageService, as_json: bool = False):
    metrics = service.get_performance_metrics()
    if as_json:
        print(json.dumps(metrics.to_dict(), indent=2, default=str))
        return
    print(f"""
=== PERFORMANCE ===
Executions: {metrics.total_executions} ({metrics.successful_executions} ok, {metrics.failed_executions} failed)
Success rate: {format_percentage(metrics.success_rate)}
Total profit: {format_usd(metrics.total_profit)}
Average profit: {format_usd(metrics.average_profit)}
Average duration: {format_duration_ms(metrics.average_execution_time_ms)}
Expectation accuracy: {format_percentage(metrics.profit_expectation_accuracy)}
Monitoring: {metrics.monitored_exchanges} exchanges, {metrics.monitored_assets} assets, {metrics.active_routes} routes""")
    for asset, profit in sorted(metrics.profit_by_asset.items()):
        print(f"  {asset:<6} {format_usd(profit)}")


async def _best_opportunity_id(service: ArbitrageService) -> Optional[int]:
    active = await service.store.list_opportunities(active_only=True)
    if not active:
        return None
    return max(active, key=lambda o: o.profit_percentage).id


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None,
              help='Path to config file (defaults to the built-in demo setup)')
@click.option('--log-level', default=None, help='Override the configured log level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """DeFi arbitrage detection and execution engine."""
    config = load_config(config_path)
    setup_logging(config.logging, log_level)
    ctx.obj = config


@cli.command()
@click.pass_obj
def scan(config):
    """Run one detection cycle and print opportunities."""
    async def run_scan():
        service = build_service(config)
        await service.open()
        try:
            opportunities = await service.detect_new_opportunities()
            print_opportunities(opportunities)
        finally:
            await service.close()

    asyncio.run(run_scan())


@cli.command()
@click.option('--duration', default=60.0, type=float, help='Seconds to monitor (default: 60)')
@click.option('--auto-execute', is_flag=True, help='Execute the best opportunity after every tick')
@click.pass_obj
def run(config, duration, auto_execute):
    """Run the monitoring loop."""
    async def run_loop():
        service = build_service(config)
        await service.open()
        try:
            service.start_monitoring()
            elapsed = 0.0
            while elapsed < duration:
                step = min(config.monitor.interval_sec, duration - elapsed)
                await asyncio.sleep(step)
                elapsed += step
                if auto_execute:
                    opportunity_id = await _best_opportunity_id(service)
                    if opportunity_id is None:
                        continue
                    try:
                        summary = await service.execute_trade(opportunity_id)
                        print_summary(summary)
                    except LegFailure as e:
                        print_summary(e.summary)
                    except ExecutionError as e:
                        logger.info(f"Skipped #{opportunity_id}: {e}")
            await service.stop_monitoring()
            print_opportunities(await service.store.list_opportunities())
            print_metrics(service)
        finally:
            await service.close()

    try:
        asyncio.run(run_loop())
    except KeyboardInterrupt:
        logger.info("Stopped by user")


@cli.command()
@click.argument('opportunity_id', type=int, required=False)
@click.pass_obj
def execute(config, opportunity_id):
    """Scan, then execute the given (or best) opportunity."""
    async def run_execute():
        service = build_service(config)
        await service.open()
        try:
            await service.detect_new_opportunities()
            target = opportunity_id if opportunity_id is not None else await _best_opportunity_id(service)
            if target is None:
                print("No active opportunities")
                return 1
            try:
                print_summary(await service.execute_trade(target))
                return 0
            except LegFailure as e:
                print_summary(e.summary)
                return 1
            except ArbitrageError as e:
                print(f"Execution rejected ({e.code}): {e}")
                return 1
        finally:
            await service.close()

    sys.exit(asyncio.run(run_execute()))


@cli.command()
@click.option('--cycles', default=3, type=int, help='Detection cycles to run first (default: 3)')
@click.option('--json', 'as_json', is_flag=True, help='Print metrics as JSON')
@click.pass_obj
def metrics(config, cycles, as_json):
    """Run a few cycles, execute the best opportunity of each, and print metrics."""
    async def run_metrics():
        service = build_service(config)
        await service.open()
        try:
            for _ in range(cycles):
                await service.detect_new_opportunities()
                opportunity_id = await _best_opportunity_id(service)
                if opportunity_id is None:
                    continue
                try:
                    await service.execute_trade(opportunity_id)
                except ExecutionError as e:
                    logger.info(f"Execution of #{opportunity_id} did not complete: {e}")
            print_metrics(service, as_json)
        finally:
            await service.close()

    asyncio.run(run_metrics())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
