"""
Registry for price source adapters.

Maps a venue's configured `kind` to its adapter class so that
venue-specific logic is selected by configuration, not by branching
on venue names.
"""

from typing import Iterable, Optional, Type

from arbie.core.errors import ConfigurationError
from arbie.core.logging import get_logger
from arbie.domain.models import Venue
from arbie.providers.base import BasePriceSource, SourceContext
from arbie.providers.http_quote import HttpPriceSource
from arbie.providers.uniswap_v2 import AerodromeSource, UniswapV2Source

logger = get_logger("registry")


class SourceRegistry:
    """
    Registry for price source adapters.

    Allows registering adapters by kind and building one instance per venue.
    """

    def __init__(self):
        self._sources: dict[str, Type[BasePriceSource]] = {}

    def register(self, kind: str, source_class: Type[BasePriceSource]) -> None:
        """
        Register an adapter class.

        Args:
            kind: Adapter kind referenced by venue config (e.g., "uniswap_v2")
            source_class: Adapter class (not instance)
        """
        self._sources[kind] = source_class
        logger.debug(f"Registered price source: {kind}")

    def list_kinds(self) -> list[str]:
        """List all registered adapter kinds."""
        return list(self._sources.keys())

    def create(self, venue: Venue, context: SourceContext) -> BasePriceSource:
        """
        Build the adapter for one venue.

        Raises:
            ConfigurationError: Unknown kind or incomplete venue config
        """
        source_class = self._sources.get(venue.kind)
        if source_class is None:
            raise ConfigurationError(
                f"Unknown venue kind '{venue.kind}' for {venue.name}",
                details={"venue": venue.name, "known_kinds": self.list_kinds()},
            )
        try:
            return source_class.from_venue(venue, context)
        except ValueError as e:
            raise ConfigurationError(str(e), details={"venue": venue.name}) from e

    def build_all(
        self,
        venues: Iterable[Venue],
        context: SourceContext,
    ) -> dict[str, BasePriceSource]:
        """Build adapters for every venue, keyed by venue name."""
        return {venue.name: self.create(venue, context) for venue in venues}


_default_registry: Optional[SourceRegistry] = None


def get_source_registry() -> SourceRegistry:
    """Get the default registry with the built-in adapters."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SourceRegistry()
        for source_class in (UniswapV2Source, AerodromeSource, HttpPriceSource):
            _default_registry.register(source_class.kind, source_class)
    return _default_registry
