"""
Audit persistence.

Supports:
- SQLite (local development, default)
- Any SQLAlchemy URL via DATABASE_URL

Stores one row per polling cycle and one row per terminal execution
attempt. Nothing else is persisted; opportunities live only in memory
for the cycle that produced them.
"""

import json
from datetime import timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from arbie.core.config import Settings, get_settings
from arbie.core.logging import get_logger
from arbie.core.timeutil import format_timestamp
from arbie.domain.models import CycleReport, ExecutionAttempt
from arbie.services.telemetry import TelemetrySink

logger = get_logger("persistence")

Base = declarative_base()


class CycleRecord(Base):
    """Database model for polling cycle reports."""

    __tablename__ = "cycles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(String(100), unique=True, nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    detected = Column(Integer, default=0)
    filtered = Column(Integer, default=0)
    scheduled = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    connection_failures = Column(Integer, default=0)
    error = Column(Text, nullable=True)
    report_json = Column(Text, nullable=False)


class AttemptRecord(Base):
    """Database model for terminal execution attempts."""

    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(String(64), unique=True, nullable=False, index=True)
    state = Column(String(20), nullable=False, index=True)
    token = Column(String(42), nullable=False, index=True)
    symbol = Column(String(20), nullable=False)
    source_venue = Column(String(50), nullable=False)
    target_venue = Column(String(50), nullable=False)
    buy_price = Column(Integer, nullable=False)
    sell_price = Column(Integer, nullable=False)
    tx_hash = Column(String(80), nullable=True)
    block_number = Column(Integer, nullable=True)
    failure_code = Column(String(50), nullable=True)
    failure_reason = Column(Text, nullable=True)
    attempted_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)


def _naive_utc(dt):
    # SQLite DateTime columns do not keep tzinfo
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class AuditTelemetry(TelemetrySink):
    """
    SQLAlchemy-backed telemetry sink.

    Writes are synchronous and short; the engine tolerates a failing
    write (it is logged and the cycle continues).
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.database_url = database_url or settings.database_url

        # Ensure data directory exists
        if self.database_url.startswith("sqlite:///") and self.database_url != "sqlite:///:memory:":
            db_path = Path(self.database_url.replace("sqlite:///", ""))
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(self.database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

        logger.info(f"Initialized audit store: {self.database_url}")

    def publish_cycle(self, report: CycleReport) -> None:
        record = CycleRecord(
            cycle_id=report.cycle_id,
            started_at=_naive_utc(report.started_at),
            finished_at=_naive_utc(report.finished_at),
            detected=report.detected,
            filtered=report.filtered,
            scheduled=report.scheduled,
            skipped=report.skipped,
            connection_failures=report.connection_failures,
            error=report.error,
            report_json=json.dumps(report.to_dict(), default=str),
        )

        session = self.Session()
        try:
            session.add(record)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to save cycle {report.cycle_id}: {e}")
            raise
        finally:
            session.close()

    def publish_attempt(self, attempt: ExecutionAttempt) -> None:
        opp = attempt.opportunity
        record = AttemptRecord(
            attempt_id=attempt.attempt_id,
            state=attempt.state.value,
            token=opp.token.address,
            symbol=opp.token.symbol,
            source_venue=opp.source_venue,
            target_venue=opp.target_venue,
            buy_price=opp.buy_price,
            sell_price=opp.sell_price,
            tx_hash=attempt.tx_hash,
            block_number=attempt.block_number,
            failure_code=attempt.failure_code,
            failure_reason=attempt.failure_reason,
            attempted_at=_naive_utc(attempt.attempted_at),
            finished_at=_naive_utc(attempt.finished_at),
        )

        session = self.Session()
        try:
            session.add(record)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to save attempt {attempt.attempt_id}: {e}")
            raise
        finally:
            session.close()

    def list_cycles(self, limit: int = 10) -> list[dict[str, Any]]:
        """List recent cycles (newest first)."""
        session = self.Session()
        try:
            records = (
                session.query(CycleRecord)
                .order_by(CycleRecord.started_at.desc(), CycleRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "cycle_id": r.cycle_id,
                    "started_at": format_timestamp(r.started_at),
                    "detected": r.detected,
                    "filtered": r.filtered,
                    "scheduled": r.scheduled,
                    "skipped": r.skipped,
                    "connection_failures": r.connection_failures,
                    "error": r.error,
                }
                for r in records
            ]
        finally:
            session.close()

    def load_cycle(self, cycle_id: str) -> Optional[dict[str, Any]]:
        """Load the full report of one cycle."""
        session = self.Session()
        try:
            record = session.query(CycleRecord).filter_by(cycle_id=cycle_id).first()
            if record:
                return json.loads(record.report_json)
            return None
        finally:
            session.close()

    def list_attempts(self, limit: int = 20, state: Optional[str] = None) -> list[dict[str, Any]]:
        """List recent terminal attempts, optionally filtered by state."""
        session = self.Session()
        try:
            query = session.query(AttemptRecord)
            if state:
                query = query.filter_by(state=state.upper())
            records = query.order_by(AttemptRecord.id.desc()).limit(limit).all()
            return [
                {
                    "attempt_id": r.attempt_id,
                    "state": r.state,
                    "symbol": r.symbol,
                    "route": f"{r.source_venue} -> {r.target_venue}",
                    "buy_price": r.buy_price,
                    "sell_price": r.sell_price,
                    "tx_hash": r.tx_hash,
                    "block_number": r.block_number,
                    "failure_code": r.failure_code,
                    "failure_reason": r.failure_reason,
                    "finished_at": format_timestamp(r.finished_at) if r.finished_at else None,
                }
                for r in records
            ]
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()
