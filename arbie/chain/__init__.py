"""
Chain module - On-chain access

Contains the RPC connection manager and the execution sinks.
"""

from arbie.chain.connection import ConnectionManager, ConnectionStatus
from arbie.chain.execution import (
    ConfirmationResult,
    DryRunExecutionSink,
    ExecutionSink,
    Web3ExecutionSink,
)

__all__ = [
    "ConnectionManager",
    "ConnectionStatus",
    "ConfirmationResult",
    "DryRunExecutionSink",
    "ExecutionSink",
    "Web3ExecutionSink",
]
