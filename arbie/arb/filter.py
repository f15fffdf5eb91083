"""
Profitability filter for arbitrage opportunities.

An opportunity passes only if ALL hold:
- Absolute profit: potential_profit >= min_profit_absolute
- Relative profit: potential_profit / buy_price >= min_profit_percentage
- Gas: current network gas price known and <= max_gas_price_gwei

Dropped opportunities are normal steady-state behaviour, not errors.
"""

from decimal import Decimal
from typing import Iterable, Optional

from arbie.core.config import PRICE_SCALE, EngineConfig
from arbie.core.logging import LoggerMixin
from arbie.domain.models import ArbitrageOpportunity


class ProfitabilityFilter(LoggerMixin):
    """Drops opportunities whose margin does not survive thresholds and gas."""

    def __init__(
        self,
        min_profit_absolute: int = 0,
        min_profit_percentage: Decimal = Decimal("0.5"),
        max_gas_price_wei: int = 15 * 10**9,
    ):
        """
        Args:
            min_profit_absolute: Minimum profit per unit, micro-units of the quote token
            min_profit_percentage: Minimum profit relative to buy price, in percent
            max_gas_price_wei: Gas price ceiling
        """
        self.min_profit_absolute = min_profit_absolute
        self.min_profit_percentage = Decimal(min_profit_percentage)
        self.max_gas_price_wei = max_gas_price_wei

    @classmethod
    def from_config(cls, config: EngineConfig) -> "ProfitabilityFilter":
        return cls(
            min_profit_absolute=config.min_profit_absolute_micro,
            min_profit_percentage=config.min_profit_percentage,
            max_gas_price_wei=config.max_gas_price_wei,
        )

    def gas_ok(self, gas_price_wei: Optional[int]) -> bool:
        # Unknown gas price cannot be shown to be under the ceiling
        return gas_price_wei is not None and gas_price_wei <= self.max_gas_price_wei

    def passes(self, opportunity: ArbitrageOpportunity, gas_price_wei: Optional[int]) -> bool:
        return (
            opportunity.potential_profit >= self.min_profit_absolute
            and opportunity.profit_percentage >= self.min_profit_percentage
            and self.gas_ok(gas_price_wei)
        )

    def filter(
        self,
        opportunities: Iterable[ArbitrageOpportunity],
        gas_price_wei: Optional[int],
    ) -> list[ArbitrageOpportunity]:
        """Keep the opportunities that pass every check, preserving order."""
        kept = []
        for opp in opportunities:
            if self.passes(opp, gas_price_wei):
                kept.append(opp)
            else:
                self.logger.debug(
                    f"Dropped {opp.token.symbol} {opp.source_venue}->{opp.target_venue}: "
                    f"profit={Decimal(opp.potential_profit) / PRICE_SCALE} "
                    f"({opp.profit_percentage:.3f}%), gas={gas_price_wei}"
                )
        return kept
