"""
Services module - Cross-cutting capabilities

Contains:
- Telemetry sinks (status board, composite fan-out)
- Audit persistence (SQLAlchemy)
"""

from arbie.services.persistence import AuditTelemetry
from arbie.services.telemetry import (
    CompositeTelemetry,
    EngineHealth,
    StatusBoard,
    TelemetrySink,
)

__all__ = [
    "AuditTelemetry",
    "CompositeTelemetry",
    "EngineHealth",
    "StatusBoard",
    "TelemetrySink",
]
