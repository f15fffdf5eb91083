"""
Telemetry sinks.

Supports:
- StatusBoard: in-memory engine health and recent activity
- CompositeTelemetry: fan-out to several sinks (e.g. StatusBoard + audit)

Every cycle publishes a CycleReport; every terminal ExecutionAttempt is
published once. Health is derived from consecutive cycle outcomes:

    STARTING -> HEALTHY
    HEALTHY  -> DEGRADED  (N consecutive cycles with connection failures or errors)
    DEGRADED -> HEALTHY   (one clean cycle)

A clean cycle that found no opportunities is still HEALTHY.
"""

from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Any, Iterable, Optional

from arbie.core.logging import get_logger
from arbie.core.timeutil import format_timestamp, now_utc
from arbie.domain.models import AttemptState, CycleReport, ExecutionAttempt

logger = get_logger("telemetry")


class TelemetrySink(ABC):
    """Receives cycle reports and terminal attempts."""

    @abstractmethod
    def publish_cycle(self, report: CycleReport) -> None:
        pass

    @abstractmethod
    def publish_attempt(self, attempt: ExecutionAttempt) -> None:
        pass


class EngineHealth(str, Enum):
    STARTING = "starting"
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class StatusBoard(TelemetrySink):
    """
    In-memory status surface.

    status() returns the JSON-able dict an HTTP status endpoint would serve.
    """

    def __init__(self, degraded_after_cycles: int = 3, recent_size: int = 50):
        self.degraded_after_cycles = degraded_after_cycles
        self.health = EngineHealth.STARTING
        self.last_report: Optional[CycleReport] = None
        self.cycles = 0
        self.failed_cycles = 0
        self.consecutive_bad_cycles = 0
        self.attempt_counts: dict[str, int] = {state.value: 0 for state in AttemptState if state.is_terminal}
        self.recent_attempts: deque[ExecutionAttempt] = deque(maxlen=recent_size)
        self._started_at = now_utc()

    def publish_cycle(self, report: CycleReport) -> None:
        self.cycles += 1
        self.last_report = report

        if not report.ok:
            self.failed_cycles += 1

        if report.ok and report.connection_failures == 0:
            self.consecutive_bad_cycles = 0
        else:
            self.consecutive_bad_cycles += 1

        previous = self.health
        if self.consecutive_bad_cycles >= self.degraded_after_cycles:
            self.health = EngineHealth.DEGRADED
        elif self.consecutive_bad_cycles == 0:
            self.health = EngineHealth.HEALTHY
        elif self.health == EngineHealth.STARTING:
            self.health = EngineHealth.HEALTHY

        if self.health != previous:
            log = logger.warning if self.health == EngineHealth.DEGRADED else logger.info
            log(f"Engine health: {previous.value} -> {self.health.value}")

    def publish_attempt(self, attempt: ExecutionAttempt) -> None:
        self.attempt_counts[attempt.state.value] = self.attempt_counts.get(attempt.state.value, 0) + 1
        self.recent_attempts.append(attempt)

    def status(self) -> dict[str, Any]:
        return {
            "health": self.health.value,
            "started_at": format_timestamp(self._started_at),
            "cycles": self.cycles,
            "failed_cycles": self.failed_cycles,
            "consecutive_bad_cycles": self.consecutive_bad_cycles,
            "attempts": dict(self.attempt_counts),
            "last_cycle": self.last_report.to_dict() if self.last_report else None,
            "recent_attempts": [a.to_dict() for a in self.recent_attempts],
        }


class CompositeTelemetry(TelemetrySink):
    """Publishes to every child sink; one failing sink does not block the rest."""

    def __init__(self, sinks: Iterable[TelemetrySink]):
        self.sinks = list(sinks)

    def publish_cycle(self, report: CycleReport) -> None:
        for sink in self.sinks:
            try:
                sink.publish_cycle(report)
            except Exception as e:
                logger.error(f"{type(sink).__name__} failed to publish cycle {report.cycle_id}: {e}")

    def publish_attempt(self, attempt: ExecutionAttempt) -> None:
        for sink in self.sinks:
            try:
                sink.publish_attempt(attempt)
            except Exception as e:
                logger.error(f"{type(sink).__name__} failed to publish attempt {attempt.attempt_id}: {e}")
