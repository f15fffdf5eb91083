"""
Cross-venue spread detection.

Core Logic:
1. Take every token with at least two venue quotes in the snapshot
2. Sort that token's venues by name (deterministic order)
3. Visit each unordered venue pair exactly once (i < j)
4. Emit one opportunity per pair with a strictly positive spread:
   buy on the cheaper venue, sell on the dearer one
"""

from typing import Iterable, Iterator

from arbie.core.logging import LoggerMixin
from arbie.domain.models import ArbitrageOpportunity, PriceSnapshot


class SpreadDetector(LoggerMixin):
    """Turns a PriceSnapshot into arbitrage opportunity candidates."""

    def detect(self, snapshot: PriceSnapshot) -> Iterator[ArbitrageOpportunity]:
        """
        Lazily yield opportunities for one snapshot.

        Equal prices never yield (zero profit is not an opportunity).
        The generator is finite and single-use.
        """
        for token in snapshot.tradable_tokens():
            venue_quotes = snapshot.quotes_for(token.address)
            venues = sorted(venue_quotes)

            for i in range(len(venues)):
                for j in range(i + 1, len(venues)):
                    quote_a = venue_quotes[venues[i]]
                    quote_b = venue_quotes[venues[j]]

                    if quote_a.price == quote_b.price:
                        continue

                    low, high = (quote_a, quote_b) if quote_a.price < quote_b.price else (quote_b, quote_a)
                    yield ArbitrageOpportunity(
                        token=token,
                        source_venue=low.venue,
                        target_venue=high.venue,
                        buy_price=low.price,
                        sell_price=high.price,
                        generated_at=snapshot.completed_at,
                    )


def rank(opportunities: Iterable[ArbitrageOpportunity]) -> list[ArbitrageOpportunity]:
    """Order by profit percentage, best first; ties broken by token and venues."""
    return sorted(
        opportunities,
        key=lambda o: (-o.profit_percentage, -o.potential_profit, o.token.symbol, o.source_venue, o.target_venue),
    )


def best_per_token(opportunities: Iterable[ArbitrageOpportunity]) -> list[ArbitrageOpportunity]:
    """Keep the first opportunity seen for each token (input should be ranked)."""
    seen: set[str] = set()
    selected = []
    for opp in opportunities:
        if opp.token.address not in seen:
            seen.add(opp.token.address)
            selected.append(opp)
    return selected
