"""
Core data models for Arbie.

All models use dataclass and provide to_dict() for JSON serialization.
Prices and profits are integer micro-units of the quote token
(see arbie.core.config.PRICE_SCALE).

Lifecycle:
- PriceQuote / PriceSnapshot: created fresh every polling cycle, never mutated
- ArbitrageOpportunity: derived per cycle, read-only
- ExecutionAttempt: owned by the ExecutionScheduler, mutated only through
  transition() until it reaches a terminal state
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from arbie.core.config import PRICE_SCALE
from arbie.core.errors import InvalidTransitionError
from arbie.core.timeutil import format_timestamp, now_utc


def format_price(micro: int) -> str:
    """Render micro-units as a decimal string (1005000 -> '1.005000')."""
    return f"{Decimal(micro) / PRICE_SCALE:.6f}"


@dataclass(frozen=True)
class Token:
    """A tradable token from the configured universe."""
    address: str            # checksummed on-chain address
    symbol: str
    decimals: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "symbol": self.symbol, "decimals": self.decimals}


@dataclass(frozen=True)
class Venue:
    """A DEX venue. `kind` selects the price source adapter."""
    name: str
    kind: str
    addresses: Mapping[str, str] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "kind": self.kind, "addresses": dict(self.addresses)}


@dataclass(frozen=True)
class PriceQuote:
    """One venue's price for one token, observed in one cycle."""
    token: Token
    venue: str
    price: int              # micro-units of the quote token, always > 0
    observed_at: datetime

    def __post_init__(self):
        if self.price <= 0:
            raise ValueError(f"Non-positive price {self.price} for {self.token.symbol}@{self.venue}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token.symbol,
            "venue": self.venue,
            "price": format_price(self.price),
            "observed_at": format_timestamp(self.observed_at),
        }


class FailureCode(str, Enum):
    """Why a (token, venue) pair is absent from a snapshot."""
    CONNECTION_FAILURE = "CONNECTION_FAILURE"
    QUOTE_UNAVAILABLE = "QUOTE_UNAVAILABLE"


@dataclass(frozen=True)
class PriceSnapshot:
    """
    Immutable set of quotes from one polling cycle.

    quotes: token address -> venue name -> PriceQuote
    failures: (token address, venue name) -> FailureCode

    A venue that failed to quote is absent, never a zero price.
    """
    cycle_id: str
    tokens: Mapping[str, Token]
    quotes: Mapping[str, Mapping[str, PriceQuote]]
    failures: Mapping[tuple[str, str], FailureCode]
    gas_price_wei: Optional[int]
    started_at: datetime
    completed_at: datetime

    @classmethod
    def build(
        cls,
        cycle_id: str,
        tokens: list[Token],
        quotes: list[PriceQuote],
        failures: dict[tuple[str, str], FailureCode],
        gas_price_wei: Optional[int],
        started_at: datetime,
        completed_at: Optional[datetime] = None,
    ) -> "PriceSnapshot":
        """Freeze collected quotes into a read-only snapshot."""
        grouped: dict[str, dict[str, PriceQuote]] = {}
        for quote in quotes:
            grouped.setdefault(quote.token.address, {})[quote.venue] = quote

        return cls(
            cycle_id=cycle_id,
            tokens=MappingProxyType({t.address: t for t in tokens}),
            quotes=MappingProxyType(
                {addr: MappingProxyType(dict(venues)) for addr, venues in grouped.items()}
            ),
            failures=MappingProxyType(dict(failures)),
            gas_price_wei=gas_price_wei,
            started_at=started_at,
            completed_at=completed_at or now_utc(),
        )

    def quotes_for(self, token_address: str) -> Mapping[str, PriceQuote]:
        return self.quotes.get(token_address, MappingProxyType({}))

    def tradable_tokens(self) -> Iterator[Token]:
        """Tokens with at least two venue quotes, in universe order."""
        for address, token in self.tokens.items():
            if len(self.quotes_for(address)) >= 2:
                yield token

    @property
    def quote_count(self) -> int:
        return sum(len(v) for v in self.quotes.values())

    @property
    def connection_failures(self) -> int:
        return sum(1 for code in self.failures.values() if code == FailureCode.CONNECTION_FAILURE)

    def summary(self) -> dict[str, Any]:
        """Compact summary for telemetry."""
        return {
            "cycle_id": self.cycle_id,
            "quotes": self.quote_count,
            "failures": len(self.failures),
            "connection_failures": self.connection_failures,
            "tradable_tokens": [t.symbol for t in self.tradable_tokens()],
            "gas_price_wei": self.gas_price_wei,
            "duration_ms": round((self.completed_at - self.started_at).total_seconds() * 1000, 1),
        }


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Buy on source_venue (low price), sell on target_venue (high price)."""
    token: Token
    source_venue: str
    target_venue: str
    buy_price: int
    sell_price: int
    generated_at: datetime = field(default_factory=now_utc)

    def __post_init__(self):
        if self.sell_price <= self.buy_price:
            raise ValueError("sell_price must exceed buy_price")

    @property
    def potential_profit(self) -> int:
        return self.sell_price - self.buy_price

    @property
    def profit_percentage(self) -> Decimal:
        """Profit relative to buy price, in percent."""
        return Decimal(self.potential_profit) * 100 / Decimal(self.buy_price)

    @property
    def venue_pair(self) -> frozenset[str]:
        return frozenset((self.source_venue, self.target_venue))

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token.symbol,
            "token_address": self.token.address,
            "source_exchange": self.source_venue,
            "target_exchange": self.target_venue,
            "buy_price": format_price(self.buy_price),
            "sell_price": format_price(self.sell_price),
            "potential_profit": format_price(self.potential_profit),
            "profit_percentage": f"{self.profit_percentage:.4f}",
            "timestamp": format_timestamp(self.generated_at),
        }


class AttemptState(str, Enum):
    """Execution attempt lifecycle."""
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.CONFIRMED, AttemptState.FAILED, AttemptState.SKIPPED)


_TRANSITIONS: dict[AttemptState, frozenset[AttemptState]] = {
    AttemptState.PENDING: frozenset({AttemptState.SUBMITTED, AttemptState.FAILED, AttemptState.SKIPPED}),
    AttemptState.SUBMITTED: frozenset({AttemptState.CONFIRMED, AttemptState.FAILED}),
    AttemptState.CONFIRMED: frozenset(),
    AttemptState.FAILED: frozenset(),
    AttemptState.SKIPPED: frozenset(),
}


@dataclass
class ExecutionAttempt:
    """One try at executing an opportunity."""
    opportunity: ArbitrageOpportunity
    state: AttemptState = AttemptState.PENDING
    attempted_at: datetime = field(default_factory=now_utc)
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def token_address(self) -> str:
        return self.opportunity.token.address

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(
        self,
        target: AttemptState,
        *,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
        reason: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        """
        Move to `target`, enforcing the state machine.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state
        """
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, target.value)

        self.state = target
        if tx_hash is not None:
            self.tx_hash = tx_hash
        if block_number is not None:
            self.block_number = block_number
        if reason is not None:
            self.failure_reason = reason
        if code is not None:
            self.failure_code = code
        if target.is_terminal:
            self.finished_at = now_utc()

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "state": self.state.value,
            "opportunity": self.opportunity.to_dict(),
            "attempted_at": format_timestamp(self.attempted_at),
            "finished_at": format_timestamp(self.finished_at) if self.finished_at else None,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "failure_code": self.failure_code,
            "failure_reason": self.failure_reason,
        }


@dataclass
class CycleReport:
    """What one polling cycle observed and decided; published to telemetry."""
    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    snapshot: dict[str, Any] = field(default_factory=dict)
    detected: int = 0
    filtered: int = 0
    scheduled: int = 0
    skipped: int = 0
    connection_failures: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": format_timestamp(self.started_at),
            "finished_at": format_timestamp(self.finished_at) if self.finished_at else None,
            "snapshot": self.snapshot,
            "detected": self.detected,
            "filtered": self.filtered,
            "scheduled": self.scheduled,
            "skipped": self.skipped,
            "connection_failures": self.connection_failures,
            "error": self.error,
        }
