"""
Providers module - Venue price sources

Each price source wraps one DEX venue kind and returns micro-unit prices.
All sources inherit from BasePriceSource for a consistent interface.
"""

from arbie.providers.base import BasePriceSource, SourceContext, reserves_to_price
from arbie.providers.http_quote import HttpPriceSource
from arbie.providers.oracle import GasOracle, PriceOracleClient
from arbie.providers.registry import SourceRegistry, get_source_registry
from arbie.providers.uniswap_v2 import AerodromeSource, UniswapV2Source

__all__ = [
    "BasePriceSource",
    "SourceContext",
    "reserves_to_price",
    "HttpPriceSource",
    "GasOracle",
    "PriceOracleClient",
    "SourceRegistry",
    "get_source_registry",
    "AerodromeSource",
    "UniswapV2Source",
]
