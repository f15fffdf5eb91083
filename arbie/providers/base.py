"""
Base price source class for all venue adapters.

All price sources must:
- Inherit from BasePriceSource
- Implement quote() for one token against the configured quote token
- Raise ConnectionFailure / QuoteUnavailable, never return a zero price
- Return integer micro-units of the quote token
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from arbie.chain.connection import ConnectionManager
from arbie.core.config import PRICE_SCALE
from arbie.core.http import HttpClient
from arbie.core.errors import QuoteUnavailable
from arbie.core.logging import LoggerMixin
from arbie.domain.models import Token, Venue


@dataclass
class SourceContext:
    """Shared collaborators handed to every adapter at construction."""
    quote_token: Token
    connection: Optional[ConnectionManager] = None
    http_client: Optional[HttpClient] = None


class BasePriceSource(ABC, LoggerMixin):
    """
    Abstract base class for all venue price sources.

    Subclasses must implement:
    - kind: Adapter identifier referenced by venue config
    - quote(): Price of a token on this venue

    Subclasses are built from configuration via from_venue().
    """

    kind: str = "base"

    def __init__(self, venue: Venue, quote_token: Token):
        self.venue = venue
        self.quote_token = quote_token

    @property
    def name(self) -> str:
        return self.venue.name

    @classmethod
    def from_venue(cls, venue: Venue, context: SourceContext) -> "BasePriceSource":
        """Build the adapter for a configured venue. Override when extra collaborators are needed."""
        return cls(venue, context.quote_token)

    @abstractmethod
    async def quote(self, token: Token) -> int:
        """
        Current price of `token` on this venue.

        Returns:
            Positive price in micro-units of the quote token

        Raises:
            ConnectionFailure: Venue/RPC unreachable
            QuoteUnavailable: No usable price for this pair
        """

    async def aclose(self) -> None:
        """Release adapter resources. Override if needed."""

    def _unavailable(self, token: Token, reason: str) -> QuoteUnavailable:
        return QuoteUnavailable(
            f"{self.name}: no price for {token.symbol} ({reason})",
            venue=self.name,
            token=token.address,
        )


def reserves_to_price(
    reserve_token: int,
    reserve_quote: int,
    token_decimals: int,
    quote_decimals: int,
) -> Optional[int]:
    """
    Spot price implied by pool reserves, in micro-units of the quote token.

    price = (reserve_quote / 10**quote_decimals) / (reserve_token / 10**token_decimals)

    Returns None for empty pools or prices that round to zero.
    """
    if reserve_token <= 0 or reserve_quote <= 0:
        return None
    numerator = reserve_quote * (10 ** token_decimals) * PRICE_SCALE
    denominator = reserve_token * (10 ** quote_decimals)
    price = numerator // denominator
    return price if price > 0 else None


def decimal_to_micro(value: Any) -> Optional[int]:
    """Convert a decimal-ish value ('1.005', 1.005) to micro-units, None if unusable."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    micro = int(amount * PRICE_SCALE)
    return micro if micro > 0 else None
