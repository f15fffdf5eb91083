"""
Arbitrage Engine.

Main orchestrator and polling loop.

Flow (one cycle):
1. Snapshot: quote every (token, venue) pair concurrently, plus gas price
2. Detect: cross-venue spreads within the snapshot
3. Rank: best profit percentage first
4. Filter: absolute / relative profit thresholds and gas ceiling
5. Select: best opportunity per token
6. Schedule: hand survivors to the ExecutionScheduler
7. Report: publish a CycleReport to telemetry

Cycles are driven by an APScheduler interval job: they start every
polling_interval seconds, a cycle that overruns the interval swallows the
missed runs (coalesce) and cycles never overlap (max_instances=1).
No opportunity or snapshot outlives its cycle.
"""

import asyncio
from datetime import timezone
from typing import Any, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from arbie.arb.detector import SpreadDetector, best_per_token, rank
from arbie.arb.filter import ProfitabilityFilter
from arbie.arb.scheduler import ExecutionScheduler
from arbie.arb.snapshot import SnapshotBuilder
from arbie.chain.connection import ConnectionManager
from arbie.chain.execution import DryRunExecutionSink, ExecutionSink, Web3ExecutionSink
from arbie.core.config import EngineConfig, TokenConfig, VenueConfig
from arbie.core.errors import ConfigurationError, ConnectionFailure
from arbie.core.http import HttpClient
from arbie.core.logging import LoggerMixin
from arbie.core.timeutil import generate_cycle_id, now_utc
from arbie.domain.models import (
    ArbitrageOpportunity,
    AttemptState,
    CycleReport,
    Token,
    Venue,
)
from arbie.providers.base import SourceContext
from arbie.providers.oracle import GasOracle, PriceOracleClient
from arbie.providers.registry import SourceRegistry, get_source_registry
from arbie.services.telemetry import CompositeTelemetry, StatusBoard, TelemetrySink

CYCLE_JOB_ID = "arb_cycle"


def to_token(config: TokenConfig) -> Token:
    return Token(address=config.address, symbol=config.symbol, decimals=config.decimals)


def to_venue(config: VenueConfig) -> Venue:
    return Venue(
        name=config.name,
        kind=config.kind,
        addresses=dict(config.addresses),
        options=dict(config.options),
    )


class ArbEngine(LoggerMixin):
    """
    DEX Arbitrage Engine.

    Coordinates the snapshot -> detect -> filter -> schedule pipeline
    and runs it on a fixed interval until shut down.
    """

    def __init__(
        self,
        config: EngineConfig,
        oracle: PriceOracleClient,
        sink: ExecutionSink,
        *,
        gas_oracle: Optional[Any] = None,
        connection: Optional[ConnectionManager] = None,
        http_client: Optional[HttpClient] = None,
        telemetry_sinks: Iterable[TelemetrySink] = (),
    ):
        """
        Initialize arbitrage engine.

        Args:
            config: Validated engine configuration
            oracle: Price oracle over the configured venues
            sink: Execution sink (dry-run or on-chain)
            gas_oracle: Anything with `async gas_price_wei() -> int`
            connection: RPC connection to open at start() and close at shutdown()
            http_client: Shared HTTP client to close at shutdown()
            telemetry_sinks: Extra sinks besides the built-in StatusBoard
        """
        self.config = config
        self.oracle = oracle
        self.sink = sink
        self.gas_oracle = gas_oracle
        self.connection = connection
        self.http_client = http_client

        self.tokens = [to_token(t) for t in config.tokens]
        self.snapshot_builder = SnapshotBuilder(
            oracle,
            self.tokens,
            gas_oracle=gas_oracle,
            concurrency=config.fetch_concurrency,
        )
        self.detector = SpreadDetector()
        self.profit_filter = ProfitabilityFilter.from_config(config)

        self.status_board = StatusBoard(degraded_after_cycles=config.degraded_after_cycles)
        self.telemetry = CompositeTelemetry([self.status_board, *telemetry_sinks])

        self.scheduler = ExecutionScheduler(
            sink,
            self.telemetry,
            trading_amount=config.trading_amount,
            concurrency=config.execution_concurrency,
            submit_timeout=config.submit_timeout,
            confirmation_timeout=config.confirmation_timeout,
            history_size=config.history_size,
            active=config.trading_active,
        )

        self.last_opportunities: list[ArbitrageOpportunity] = []
        self._stop = asyncio.Event()
        self._cycle_task: Optional[asyncio.Task] = None
        self._poller: Optional[AsyncIOScheduler] = None
        self._max_cycles: Optional[int] = None
        self._cycles_run = 0
        self._started = False
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        registry: Optional[SourceRegistry] = None,
        sink: Optional[ExecutionSink] = None,
        telemetry_sinks: Iterable[TelemetrySink] = (),
    ) -> "ArbEngine":
        """
        Build the engine and all its collaborators from configuration.

        Raises:
            ConfigurationError: Unknown venue kind, incomplete venue or bad key
        """
        quote_token = to_token(config.quote_token)
        tokens = [to_token(t) for t in config.tokens]
        venues = [to_venue(v) for v in config.venues]

        connection = ConnectionManager(config.rpc_url, private_key=config.private_key)
        http_client = HttpClient(timeout=config.call_timeout)
        context = SourceContext(
            quote_token=quote_token,
            connection=connection,
            http_client=http_client,
        )

        sources = (registry or get_source_registry()).build_all(venues, context)
        oracle = PriceOracleClient(sources, tokens, timeout=config.call_timeout)
        gas_oracle = GasOracle(connection, timeout=config.call_timeout)

        if sink is None:
            if config.dry_run:
                sink = DryRunExecutionSink()
            else:
                try:
                    sink = Web3ExecutionSink(
                        connection,
                        contract_address=config.arbitrage_contract_address,
                        private_key=config.private_key,
                        quote_token=quote_token,
                        venues={v.name: v for v in venues},
                    )
                except ValueError as e:
                    raise ConfigurationError(f"Invalid execution settings: {e}") from e

        return cls(
            config,
            oracle,
            sink,
            gas_oracle=gas_oracle,
            connection=connection,
            http_client=http_client,
            telemetry_sinks=telemetry_sinks,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Open the RPC connection before the first tick.

        Raises:
            ConfigurationError: If require_connection is set and the RPC is unreachable
        """
        if self._started:
            return

        if self.connection is not None:
            try:
                await self.connection.connect()
            except ConnectionFailure as e:
                if self.config.require_connection:
                    raise ConfigurationError(
                        f"RPC connection required but unavailable: {e.message}",
                        details={"rpc_url": self.config.rpc_url},
                    ) from e
                self.logger.warning(f"Starting without RPC connection: {e.message}")

        self._started = True
        mode = "dry-run" if self.config.dry_run else "live"
        self.logger.info(
            f"Engine started ({mode}): {len(self.tokens)} tokens x "
            f"{len(self.oracle.venue_names)} venues, every {self.config.polling_interval}s"
        )

    @property
    def poller(self) -> Optional[AsyncIOScheduler]:
        """The APScheduler instance driving cycles while run() is active."""
        return self._poller

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Run the polling loop until stop() / shutdown() or max_cycles.

        An error inside a cycle is reported and the loop carries on.
        """
        self._max_cycles = max_cycles
        self._cycles_run = 0

        try:
            await self.start()
            if self._stop.is_set():
                return

            self._poller = AsyncIOScheduler(
                event_loop=asyncio.get_running_loop(),
                timezone=timezone.utc,
            )
            self._poller.add_job(
                self._tick,
                "interval",
                seconds=self.config.polling_interval,
                id=CYCLE_JOB_ID,
                name=CYCLE_JOB_ID,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                next_run_time=now_utc(),
            )
            self._poller.start()
            self.logger.info(f"Polling every {self.config.polling_interval}s")

            await self._stop.wait()
        finally:
            await self.shutdown()

    async def _tick(self) -> None:
        """Interval job: one cycle, never two at once (max_instances=1)."""
        if self._stop.is_set():
            return

        self._cycle_task = asyncio.create_task(self.run_cycle())
        try:
            await self._cycle_task
        except asyncio.CancelledError:
            self.logger.info("In-flight cycle cancelled by shutdown")
            return
        finally:
            self._cycle_task = None

        self._cycles_run += 1
        if self._max_cycles is not None and self._cycles_run >= self._max_cycles:
            self._stop.set()

    async def run_cycle(self) -> CycleReport:
        """Execute one polling cycle and publish its report."""
        cycle_id = generate_cycle_id()
        report = CycleReport(cycle_id=cycle_id, started_at=now_utc())

        try:
            snapshot = await self.snapshot_builder.build(cycle_id)
            report.snapshot = snapshot.summary()
            report.connection_failures = snapshot.connection_failures
            if snapshot.gas_price_wei is None and self.gas_oracle is not None:
                report.connection_failures += 1

            candidates = list(self.detector.detect(snapshot))
            report.detected = len(candidates)

            passed = rank(self.profit_filter.filter(candidates, snapshot.gas_price_wei))
            report.filtered = len(passed)
            opportunities = best_per_token(passed)
            self.last_opportunities = opportunities

            attempts = await self.scheduler.schedule_all(opportunities)
            report.skipped = sum(1 for a in attempts if a.state == AttemptState.SKIPPED)
            report.scheduled = len(attempts) - report.skipped

        except Exception as e:
            self.logger.error(f"[{cycle_id}] Cycle failed: {e}", exc_info=True, extra={"cycle_id": cycle_id})
            report.error = f"{type(e).__name__}: {e}"

        report.finished_at = now_utc()
        self.logger.info(
            f"[{cycle_id}] detected={report.detected} passed={report.filtered} "
            f"scheduled={report.scheduled} skipped={report.skipped} "
            f"connection_failures={report.connection_failures}",
            extra={"cycle_id": cycle_id},
        )
        self.telemetry.publish_cycle(report)
        return report

    def stop(self) -> None:
        """Request cooperative shutdown; safe to call from a signal handler."""
        if not self._stop.is_set():
            self.logger.info("Stop requested")
        self._stop.set()
        if self._poller is not None and self._poller.running:
            self._poller.shutdown(wait=False)
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()

    async def shutdown(self) -> None:
        """Cancel the in-flight cycle, drain execution, release connections."""
        self.stop()
        await self.scheduler.shutdown()

        if self._closed:
            return
        self._closed = True

        await self.oracle.aclose()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.connection is not None:
            await self.connection.close()
        self.logger.info("Engine stopped")

    # ------------------------------------------------------------------
    # Trading toggle and status
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self.scheduler.pause()

    def resume(self) -> None:
        self.scheduler.resume()

    def status(self) -> dict[str, Any]:
        """Engine status (health, last cycle, trading state, connection)."""
        status = self.status_board.status()
        status.update({
            "dry_run": self.config.dry_run,
            "trading_active": self.scheduler.is_active,
            "in_flight": len(self.scheduler.in_flight),
            "polling_interval": self.config.polling_interval,
            "venues": self.oracle.venue_names,
            "tokens": [t.symbol for t in self.tokens],
        })
        if self.connection is not None:
            status["connection"] = self.connection.describe()
        return status
