"""
Execution scheduler.

Drives each ExecutionAttempt through its state machine:

    PENDING -> SUBMITTED -> CONFIRMED
    PENDING -> SUBMITTED -> FAILED
    PENDING -> FAILED            (sink rejected before broadcast)
    PENDING -> SKIPPED           (token already in flight, paused, shutdown)

At most one non-terminal attempt exists per token. The in-flight map is
the only mutable shared state in the engine and is guarded by one lock
per token, so unrelated tokens execute concurrently. Failed attempts are
never retried here; the next polling cycle re-evaluates from scratch.
"""

import asyncio
from collections import deque
from decimal import Decimal
from typing import Iterable, Optional

from arbie.chain.execution import ExecutionSink
from arbie.core.errors import ExecutionRejected, ExecutionTimeout
from arbie.core.logging import LoggerMixin
from arbie.domain.models import ArbitrageOpportunity, AttemptState, ExecutionAttempt
from arbie.services.telemetry import TelemetrySink

# Skip / failure codes recorded on attempts
IN_FLIGHT = "IN_FLIGHT"
TRADING_PAUSED = "TRADING_PAUSED"
SHUTDOWN = "SHUTDOWN"
REVERTED = "REVERTED"
SINK_ERROR = "SINK_ERROR"
EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"


class ExecutionScheduler(LoggerMixin):
    """Serializes execution per token and reports terminal outcomes."""

    def __init__(
        self,
        sink: ExecutionSink,
        telemetry: Optional[TelemetrySink] = None,
        *,
        trading_amount: Decimal = Decimal("1000"),
        concurrency: int = 2,
        submit_timeout: float = 30.0,
        confirmation_timeout: float = 120.0,
        confirmation_grace: float = 5.0,
        history_size: int = 200,
        active: bool = True,
    ):
        self.sink = sink
        self.telemetry = telemetry
        self.trading_amount = trading_amount
        self.submit_timeout = submit_timeout
        self.confirmation_timeout = confirmation_timeout
        self.confirmation_grace = confirmation_grace

        self._in_flight: dict[str, ExecutionAttempt] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._slots = asyncio.Semaphore(concurrency)
        self._stop = asyncio.Event()
        self._history: deque[ExecutionAttempt] = deque(maxlen=history_size)
        self._closing = False
        self._active = active

    # ------------------------------------------------------------------
    # Trading toggle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    def pause(self) -> None:
        """Stop creating executions; new opportunities are SKIPPED."""
        self._active = False
        self.logger.warning("Trading paused")

    def resume(self) -> None:
        self._active = True
        self.logger.info("Trading resumed")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> dict[str, ExecutionAttempt]:
        """Snapshot copy of non-terminal attempts keyed by token address."""
        return dict(self._in_flight)

    @property
    def history(self) -> list[ExecutionAttempt]:
        """Archived terminal attempts, oldest first."""
        return list(self._history)

    @property
    def is_closing(self) -> bool:
        return self._closing

    def _lock_for(self, token_address: str) -> asyncio.Lock:
        lock = self._locks.get(token_address)
        if lock is None:
            lock = self._locks[token_address] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule(self, opportunity: ArbitrageOpportunity) -> Optional[ExecutionAttempt]:
        """
        Create an attempt for a filtered opportunity.

        Returns:
            The attempt (possibly already SKIPPED), or None once shutting down
        """
        if self._closing:
            return None

        attempt = ExecutionAttempt(opportunity=opportunity)
        token = attempt.token_address

        async with self._lock_for(token):
            if self._closing:
                return None

            current = self._in_flight.get(token)
            if current is not None and not current.is_terminal:
                self._archive(attempt, AttemptState.SKIPPED, IN_FLIGHT,
                              f"attempt {current.attempt_id} still {current.state.value}")
                return attempt

            if not self._active:
                self._archive(attempt, AttemptState.SKIPPED, TRADING_PAUSED, "trading paused")
                return attempt

            self._in_flight[token] = attempt

        task = asyncio.create_task(self._run(attempt), name=f"attempt-{attempt.attempt_id}")
        self._tasks[attempt.attempt_id] = task
        task.add_done_callback(lambda _t, aid=attempt.attempt_id: self._tasks.pop(aid, None))

        self.logger.info(
            f"Scheduled {attempt.attempt_id}: {opportunity.token.symbol} "
            f"{opportunity.source_venue} -> {opportunity.target_venue} "
            f"({opportunity.profit_percentage:.3f}%)"
        )
        return attempt

    async def schedule_all(
        self,
        opportunities: Iterable[ArbitrageOpportunity],
    ) -> list[ExecutionAttempt]:
        """Schedule in order; the first opportunity per token wins, the rest are SKIPPED."""
        attempts = []
        for opp in opportunities:
            attempt = await self.schedule(opp)
            if attempt is None:
                break
            attempts.append(attempt)
        return attempts

    async def wait_idle(self) -> None:
        """Wait until every running attempt has reached a terminal state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Stop creating attempts, skip those still waiting for an execution
        slot, and let already-submitted ones reach confirm-or-fail.
        """
        if not self._closing:
            self.logger.info(f"Scheduler shutting down ({len(self._in_flight)} in flight)")
        self._closing = True
        self._stop.set()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Attempt lifecycle
    # ------------------------------------------------------------------

    async def _run(self, attempt: ExecutionAttempt) -> None:
        try:
            if not await self._acquire_slot():
                attempt.transition(AttemptState.SKIPPED, reason="engine shutting down", code=SHUTDOWN)
                return
            try:
                await self._submit_and_confirm(attempt)
            finally:
                self._slots.release()
        finally:
            await self._retire(attempt)

    async def _acquire_slot(self) -> bool:
        """Wait for an execution slot; False if shutdown wins the race."""
        if self._closing:
            return False

        slot = asyncio.ensure_future(self._slots.acquire())
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({slot, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (slot, stop):
                if not fut.done():
                    fut.cancel()

        if slot.done() and not slot.cancelled():
            if self._closing:
                self._slots.release()
                return False
            return True
        return False

    async def _submit_and_confirm(self, attempt: ExecutionAttempt) -> None:
        opp = attempt.opportunity

        try:
            tx_hash = await asyncio.wait_for(
                self.sink.submit(opp, self.trading_amount),
                timeout=self.submit_timeout,
            )
        except ExecutionRejected as e:
            attempt.transition(AttemptState.FAILED, reason=e.message, code=e.code)
            return
        except asyncio.TimeoutError:
            attempt.transition(
                AttemptState.FAILED,
                reason=f"submission not acknowledged within {self.submit_timeout}s",
                code=EXECUTION_TIMEOUT,
            )
            return
        except Exception as e:
            self.logger.error(f"Sink error submitting {attempt.attempt_id}: {e}", exc_info=True)
            attempt.transition(AttemptState.FAILED, reason=str(e), code=SINK_ERROR)
            return

        attempt.transition(AttemptState.SUBMITTED, tx_hash=tx_hash)
        self.logger.info(
            f"Submitted {attempt.attempt_id}: {tx_hash}",
            extra={"attempt_id": attempt.attempt_id, "tx_hash": tx_hash},
        )

        try:
            result = await asyncio.wait_for(
                self.sink.await_confirmation(tx_hash, self.confirmation_timeout),
                timeout=self.confirmation_timeout + self.confirmation_grace,
            )
        except (ExecutionTimeout, asyncio.TimeoutError):
            error = ExecutionTimeout(
                f"no confirmation for {tx_hash} within {self.confirmation_timeout}s; "
                f"reconcile manually",
                tx_hash=tx_hash,
            )
            self.logger.error(f"{attempt.attempt_id}: {error.message}")
            attempt.transition(AttemptState.FAILED, reason=error.message, code=error.code)
            return
        except Exception as e:
            self.logger.error(f"Sink error confirming {attempt.attempt_id}: {e}", exc_info=True)
            attempt.transition(AttemptState.FAILED, reason=str(e), code=SINK_ERROR)
            return

        if result.confirmed:
            attempt.transition(AttemptState.CONFIRMED, block_number=result.block_number)
        else:
            attempt.transition(
                AttemptState.FAILED,
                block_number=result.block_number,
                reason=f"transaction {tx_hash} reverted",
                code=REVERTED,
            )

    async def _retire(self, attempt: ExecutionAttempt) -> None:
        token = attempt.token_address
        async with self._lock_for(token):
            if self._in_flight.get(token) is attempt:
                del self._in_flight[token]
        self._archive(attempt)

    def _archive(
        self,
        attempt: ExecutionAttempt,
        state: Optional[AttemptState] = None,
        code: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        if state is not None:
            attempt.transition(state, reason=reason, code=code)

        self._history.append(attempt)
        log = self.logger.info if attempt.state == AttemptState.CONFIRMED else self.logger.warning
        if attempt.state == AttemptState.SKIPPED:
            log = self.logger.debug
        log(
            f"Attempt {attempt.attempt_id} {attempt.state.value}: "
            f"{attempt.opportunity.token.symbol} {attempt.failure_code or ''} {attempt.failure_reason or ''}".rstrip()
        )

        if self.telemetry is not None:
            try:
                self.telemetry.publish_attempt(attempt)
            except Exception as e:
                self.logger.error(f"Telemetry publish failed for {attempt.attempt_id}: {e}")
