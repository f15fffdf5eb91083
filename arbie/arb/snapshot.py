"""
Price snapshot builder.

Fans out one get_price() call per (token, venue) pair, bounded by a
concurrency limit, and fans back in to a single immutable PriceSnapshot.
Per-pair failures are recorded, never fatal to the snapshot.
"""

import asyncio
from typing import Optional, Sequence

from arbie.core.errors import ConnectionFailure, QuoteUnavailable
from arbie.core.logging import LoggerMixin
from arbie.core.timeutil import generate_cycle_id, now_utc
from arbie.domain.models import FailureCode, PriceQuote, PriceSnapshot, Token
from arbie.providers.oracle import GasOracle, PriceOracleClient


class SnapshotBuilder(LoggerMixin):
    """Builds one PriceSnapshot per polling cycle."""

    def __init__(
        self,
        oracle: PriceOracleClient,
        tokens: Sequence[Token],
        gas_oracle: Optional[GasOracle] = None,
        concurrency: int = 8,
    ):
        self.oracle = oracle
        self.tokens = list(tokens)
        self.gas_oracle = gas_oracle
        self.concurrency = concurrency

    async def build(self, cycle_id: Optional[str] = None) -> PriceSnapshot:
        """
        Collect quotes for every (token, venue) pair.

        Returns only after every fetch has settled. Cancellation propagates
        to all outstanding fetches.
        """
        cycle_id = cycle_id or generate_cycle_id()
        started_at = now_utc()
        semaphore = asyncio.Semaphore(self.concurrency)

        quotes: list[PriceQuote] = []
        failures: dict[tuple[str, str], FailureCode] = {}

        async def fetch(token: Token, venue: str) -> None:
            async with semaphore:
                try:
                    quotes.append(await self.oracle.get_price(token, venue))
                except ConnectionFailure as e:
                    failures[(token.address, venue)] = FailureCode.CONNECTION_FAILURE
                    self.logger.warning(f"[{cycle_id}] {e.message}")
                except QuoteUnavailable as e:
                    failures[(token.address, venue)] = FailureCode.QUOTE_UNAVAILABLE
                    self.logger.info(f"[{cycle_id}] {e.message}")

        fetches = [
            fetch(token, venue)
            for token in self.tokens
            for venue in self.oracle.venue_names
        ]
        gas_price, _ = await asyncio.gather(
            self._fetch_gas_price(cycle_id),
            asyncio.gather(*fetches),
        )

        snapshot = PriceSnapshot.build(
            cycle_id=cycle_id,
            tokens=self.tokens,
            quotes=quotes,
            failures=failures,
            gas_price_wei=gas_price,
            started_at=started_at,
        )
        self.logger.debug(f"[{cycle_id}] snapshot: {snapshot.summary()}")
        return snapshot

    async def _fetch_gas_price(self, cycle_id: str) -> Optional[int]:
        if self.gas_oracle is None:
            return None
        try:
            return await self.gas_oracle.gas_price_wei()
        except ConnectionFailure as e:
            self.logger.warning(f"[{cycle_id}] {e.message}")
            return None
