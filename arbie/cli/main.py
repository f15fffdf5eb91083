"""
Arbie CLI entry point.

Usage:
    # Run one cycle and print the opportunities found
    python -m arbie.cli.main --once

    # Run the polling loop (Ctrl+C for graceful shutdown)
    python -m arbie.cli.main --run

    # Show configuration and recent activity
    python -m arbie.cli.main --status
"""

import asyncio
import signal
import sys
from decimal import Decimal
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from arbie.arb.engine import ArbEngine, to_token
from arbie.chain.connection import ConnectionManager
from arbie.core.config import EngineConfig, get_settings, load_engine_config
from arbie.core.errors import ConfigurationError
from arbie.core.logging import get_logger, setup_logging
from arbie.domain.models import ArbitrageOpportunity, CycleReport, format_price
from arbie.services.persistence import AuditTelemetry

console = Console()
logger = get_logger("cli")


def load_config(config_path: Optional[str] = None, force_dry_run: bool = False) -> EngineConfig:
    """Load YAML + environment and validate; --dry-run wins over both."""
    overrides = {"dry_run": True} if force_dry_run else None
    return load_engine_config(config_path, get_settings(), overrides)


def build_engine(config: EngineConfig) -> ArbEngine:
    audit = AuditTelemetry(settings=get_settings())
    return ArbEngine.from_config(config, telemetry_sinks=[audit])


async def run_once(engine: ArbEngine) -> CycleReport:
    """Run a single cycle and wait for its executions to settle."""
    try:
        await engine.start()
        report = await engine.run_cycle()
        await engine.scheduler.wait_idle()
        return report
    finally:
        await engine.shutdown()


async def run_forever(engine: ArbEngine) -> None:
    """Run the polling loop with SIGINT/SIGTERM mapped to cooperative shutdown."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass
    await engine.run()


def display_opportunities(opportunities: list[ArbitrageOpportunity]) -> None:
    """Display ranked opportunities in terminal."""
    if not opportunities:
        console.print("[dim]No profitable opportunities this cycle.[/dim]\n")
        return

    table = Table(title="Opportunities")
    table.add_column("Token", style="cyan")
    table.add_column("Buy on")
    table.add_column("Sell on")
    table.add_column("Buy", justify="right")
    table.add_column("Sell", justify="right")
    table.add_column("Profit", justify="right", style="green")
    table.add_column("%", justify="right", style="green")

    for opp in opportunities:
        table.add_row(
            opp.token.symbol,
            opp.source_venue,
            opp.target_venue,
            format_price(opp.buy_price),
            format_price(opp.sell_price),
            format_price(opp.potential_profit),
            f"{opp.profit_percentage:.3f}",
        )

    console.print(table)
    console.print()


def display_cycle(report: CycleReport, engine: ArbEngine) -> None:
    """Display one cycle's report and the attempts it produced."""
    console.print("\n" + "=" * 60)
    console.print(f"[bold blue]Cycle {report.cycle_id}[/bold blue]")
    console.print("=" * 60 + "\n")

    if report.error:
        console.print(f"[bold red]Cycle error:[/bold red] {report.error}\n")

    snapshot = report.snapshot
    gas = snapshot.get("gas_price_wei")
    console.print(
        f"Quotes: {snapshot.get('quotes', 0)}  "
        f"Failures: {snapshot.get('failures', 0)}  "
        f"Gas: {f'{gas / 1e9:.3f} gwei' if gas is not None else 'unknown'}"
    )
    console.print(
        f"Detected: {report.detected}  Passed: {report.filtered}  "
        f"Scheduled: {report.scheduled}  Skipped: {report.skipped}\n"
    )

    display_opportunities(engine.last_opportunities)

    attempts = engine.scheduler.history
    if attempts:
        table = Table(title="Execution Attempts")
        table.add_column("Attempt", style="cyan")
        table.add_column("Token")
        table.add_column("State")
        table.add_column("Tx / Reason", style="dim")

        for attempt in attempts:
            color = {"CONFIRMED": "green", "FAILED": "red", "SKIPPED": "yellow"}.get(
                attempt.state.value, "white"
            )
            table.add_row(
                attempt.attempt_id,
                attempt.opportunity.token.symbol,
                f"[{color}]{attempt.state.value}[/{color}]",
                attempt.tx_hash or attempt.failure_reason or "",
            )

        console.print(table)
        console.print()


@click.command()
@click.option("--once", is_flag=True, help="Run one polling cycle and exit")
@click.option("--run", "run_loop", is_flag=True, help="Run the polling loop")
@click.option("--status", is_flag=True, help="Show system status")
@click.option("--dry-run", is_flag=True, help="Force paper trading (no transactions)")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def main(
    once: bool,
    run_loop: bool,
    status: bool,
    dry_run: bool,
    config_path: Optional[str],
    verbose: bool,
) -> None:
    """Arbie - DEX Arbitrage Detection and Execution Engine"""

    # Setup logging
    log_level = "DEBUG" if verbose else None
    setup_logging(log_level=log_level)

    try:
        if status:
            show_status(config_path)
            return

        if once:
            config = load_config(config_path, force_dry_run=dry_run)
            engine = build_engine(config)
            mode = "dry-run" if config.dry_run else "LIVE"
            console.print(f"[bold]Running one Arbie cycle ({mode})...[/bold]\n")
            report = asyncio.run(run_once(engine))
            display_cycle(report, engine)
            return

        if run_loop:
            config = load_config(config_path, force_dry_run=dry_run)
            engine = build_engine(config)
            mode = "dry-run" if config.dry_run else "LIVE"
            console.print(f"[bold]Starting Arbie polling loop ({mode}), every {config.polling_interval}s[/bold]")
            console.print("Press Ctrl+C to stop\n")
            asyncio.run(run_forever(engine))
            console.print("[yellow]Stopped.[/yellow]")
            return

    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e.message}")
        for problem in e.details.get("errors", []):
            console.print(f"  - {problem}")
        sys.exit(2)

    # Default: show help
    ctx = click.get_current_context()
    click.echo(ctx.get_help())


async def fetch_wallet_balances(config: EngineConfig) -> dict[str, Optional[Decimal]]:
    """Quote-token and traded-token balances of the configured wallet."""
    connection = ConnectionManager(config.rpc_url, private_key=config.private_key)
    tokens = [to_token(config.quote_token), *(to_token(t) for t in config.tokens)]
    try:
        return await connection.wallet_balances(tokens)
    finally:
        await connection.close()


def show_status(config_path: Optional[str] = None) -> None:
    """Show configuration and recent activity from the audit store."""
    settings = get_settings()
    config = load_config(config_path)

    console.print("\n[bold]Arbie System Status[/bold]\n")

    # Settings table
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Environment", settings.arbie_env)
    table.add_row("Log Level", settings.log_level)
    table.add_row("Database", settings.database_url)
    table.add_row("RPC", config.rpc_url)
    table.add_row("Mode", "dry-run" if config.dry_run else "[bold red]LIVE[/bold red]")
    table.add_row("Trading", "active" if config.trading_active else "paused")
    table.add_row("Polling Interval", f"{config.polling_interval}s")
    table.add_row("Trading Amount", f"{config.trading_amount} {config.quote_token.symbol}")
    table.add_row("Min Profit", f"{config.min_profit_percentage}% / {config.min_profit_absolute}")
    table.add_row("Max Gas", f"{config.max_gas_price_gwei} gwei")
    table.add_row("Tokens", ", ".join(t.symbol for t in config.tokens))
    table.add_row("Venues", ", ".join(f"{v.name} ({v.kind})" for v in config.venues))

    def check_key(key: Optional[str]) -> str:
        if key and len(key) > 5:
            return "[green]✓ Configured[/green]"
        return "[red]✗ Missing[/red]"

    table.add_row("Private Key", check_key(config.private_key))
    table.add_row("Arbitrage Contract", check_key(config.arbitrage_contract_address))

    console.print(table)
    console.print()

    # Wallet balances
    if config.private_key:
        balances = asyncio.run(fetch_wallet_balances(config))
        table = Table(title="Wallet Balances")
        table.add_column("Token", style="cyan")
        table.add_column("Balance", justify="right")
        for symbol, balance in balances.items():
            table.add_row(symbol, f"{balance:,.6f}" if balance is not None else "[red]unavailable[/red]")
        console.print(table)
        console.print()

    audit = AuditTelemetry(settings=settings)

    # Recent cycles
    recent = audit.list_cycles(limit=5)
    if recent:
        table = Table(title="Recent Cycles")
        table.add_column("Cycle", style="cyan")
        table.add_column("Time")
        table.add_column("Detected", justify="right")
        table.add_column("Passed", justify="right")
        table.add_column("Scheduled", justify="right")
        table.add_column("Conn. Failures", justify="right")
        table.add_column("Error", style="red")

        for cycle in recent:
            table.add_row(
                cycle["cycle_id"],
                cycle["started_at"],
                str(cycle["detected"]),
                str(cycle["filtered"]),
                str(cycle["scheduled"]),
                str(cycle["connection_failures"]),
                cycle["error"] or "",
            )

        console.print(table)
        console.print()

    # Recent attempts
    attempts = audit.list_attempts(limit=10)
    if attempts:
        table = Table(title="Recent Attempts")
        table.add_column("Attempt", style="cyan")
        table.add_column("Token")
        table.add_column("Route")
        table.add_column("State")
        table.add_column("Tx / Reason", style="dim")

        for attempt in attempts:
            table.add_row(
                attempt["attempt_id"],
                attempt["symbol"],
                attempt["route"],
                attempt["state"],
                attempt["tx_hash"] or attempt["failure_reason"] or "",
            )

        console.print(table)

    audit.close()


if __name__ == "__main__":
    main()
