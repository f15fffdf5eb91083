"""
Arbie Arbitrage Module.

Cross-venue DEX spread detection and execution.

Components:
- snapshot: Concurrent per-cycle price collection
- detector: Pairwise spread detection and ranking
- filter: Profit thresholds and gas ceiling
- scheduler: Per-token execution state machine
- engine: Polling loop and wiring
"""

from arbie.arb.detector import SpreadDetector, best_per_token, rank
from arbie.arb.engine import ArbEngine
from arbie.arb.filter import ProfitabilityFilter
from arbie.arb.scheduler import ExecutionScheduler
from arbie.arb.snapshot import SnapshotBuilder

__all__ = [
    "SpreadDetector",
    "best_per_token",
    "rank",
    "ArbEngine",
    "ProfitabilityFilter",
    "ExecutionScheduler",
    "SnapshotBuilder",
]
