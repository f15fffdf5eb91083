"""
PriceOracleClient: timed, typed access to venue price sources.

Every call is bounded by the per-call timeout so one unresponsive
venue cannot stall a polling cycle. Failures come back as exceptions
(ConnectionFailure / QuoteUnavailable), never as a zero price.
"""

import asyncio
from typing import Iterable, Mapping, Optional

from arbie.chain.connection import RPC_VENUE, ConnectionManager
from arbie.core.errors import ConnectionFailure, PriceSourceError, QuoteUnavailable
from arbie.core.logging import LoggerMixin
from arbie.core.timeutil import now_utc
from arbie.domain.models import PriceQuote, Token
from arbie.providers.base import BasePriceSource


class PriceOracleClient(LoggerMixin):
    """Routes get_price() calls to the configured venue adapters."""

    def __init__(
        self,
        sources: Mapping[str, BasePriceSource],
        tokens: Iterable[Token],
        timeout: float = 5.0,
    ):
        self.sources = dict(sources)
        self.tokens = {t.address: t for t in tokens}
        self.timeout = timeout

    @property
    def venue_names(self) -> list[str]:
        return sorted(self.sources)

    async def get_price(self, token: Token, venue: str) -> PriceQuote:
        """
        Quote `token` on `venue`.

        Raises:
            QuoteUnavailable: Pair outside the configured universe, or no usable price
            ConnectionFailure: Transport error or timeout
        """
        source = self.sources.get(venue)
        if source is None or token.address not in self.tokens:
            raise QuoteUnavailable(
                f"Unsupported pair {token.symbol}@{venue}",
                venue=venue,
                token=token.address,
            )

        try:
            price = await asyncio.wait_for(source.quote(token), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionFailure(
                f"{venue}: quote for {token.symbol} timed out after {self.timeout}s",
                venue=venue,
                token=token.address,
            ) from e
        except PriceSourceError:
            raise
        except Exception as e:
            self.logger.error(f"{venue}: unexpected error quoting {token.symbol}: {e}", exc_info=True)
            raise ConnectionFailure(
                f"{venue}: quote for {token.symbol} failed: {e}",
                venue=venue,
                token=token.address,
            ) from e

        if price <= 0:
            raise QuoteUnavailable(
                f"{venue}: non-positive price for {token.symbol}",
                venue=venue,
                token=token.address,
            )
        return PriceQuote(token=token, venue=venue, price=price, observed_at=now_utc())

    async def aclose(self) -> None:
        for source in self.sources.values():
            await source.aclose()


class GasOracle(LoggerMixin):
    """Current network gas price, read with a timeout."""

    def __init__(self, connection: Optional[ConnectionManager], timeout: float = 5.0):
        self.connection = connection
        self.timeout = timeout

    async def gas_price_wei(self) -> int:
        """
        Raises:
            ConnectionFailure: RPC unreachable or too slow
        """
        if self.connection is None:
            raise ConnectionFailure("No RPC connection configured", venue=RPC_VENUE)
        try:
            price = int(await asyncio.wait_for(self.connection.w3.eth.gas_price, timeout=self.timeout))
        except asyncio.TimeoutError as e:
            error = ConnectionFailure(f"Gas price timed out after {self.timeout}s", venue=RPC_VENUE)
            self.connection.record_failure(error)
            raise error from e
        except Exception as e:
            error = ConnectionFailure(f"Gas price unavailable: {e}", venue=RPC_VENUE)
            self.connection.record_failure(error)
            raise error from e

        self.connection.record_success()
        return price
