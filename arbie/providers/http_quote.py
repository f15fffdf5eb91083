"""
HTTP JSON price source.

For venues whose prices are exposed over HTTP (aggregator or indexer
APIs) rather than read from pool contracts.

Venue options:
    url: URL template, may reference {token} (address), {symbol} and
         {quote} (quote token address); any other placeholder is rejected
    price_field: dotted path to the price in the JSON body (default "price")
    headers: extra request headers (e.g. API keys)
"""

from string import Formatter
from typing import Any, Optional

from arbie.core.http import HttpClient
from arbie.domain.models import Token, Venue
from arbie.providers.base import BasePriceSource, SourceContext, decimal_to_micro


URL_PLACEHOLDERS = frozenset({"token", "symbol", "quote"})


def extract_field(payload: dict[str, Any], path: str) -> Optional[Any]:
    """Follow a dotted path ('data.0.price') through dicts and lists."""
    current: Any = payload
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


class HttpPriceSource(BasePriceSource):
    """Price read from a JSON HTTP endpoint."""

    kind = "http"

    def __init__(self, venue: Venue, quote_token: Token, http_client: HttpClient):
        super().__init__(venue, quote_token)
        self.http = http_client

        self.url_template = venue.options.get("url")
        if not self.url_template:
            raise ValueError(f"Venue {venue.name} ({self.kind}) needs an 'url' option")
        unknown = {
            field for _, field, _, _ in Formatter().parse(self.url_template)
            if field is not None and field not in URL_PLACEHOLDERS
        }
        if unknown:
            raise ValueError(
                f"Venue {venue.name}: unknown url placeholder(s) {sorted(unknown)}, "
                f"expected {sorted(URL_PLACEHOLDERS)}"
            )
        self.price_field = venue.options.get("price_field", "price")
        self.headers = dict(venue.options.get("headers", {}))

    @classmethod
    def from_venue(cls, venue: Venue, context: SourceContext) -> "HttpPriceSource":
        if context.http_client is None:
            raise ValueError(f"Venue {venue.name} needs an HTTP client")
        return cls(venue, context.quote_token, context.http_client)

    async def quote(self, token: Token) -> int:
        url = self.url_template.format(
            token=token.address,
            symbol=token.symbol,
            quote=self.quote_token.address,
        )
        payload = await self.http.get_json(url, headers=self.headers or None, venue=self.name)

        price = decimal_to_micro(extract_field(payload, self.price_field))
        if price is None:
            raise self._unavailable(token, f"missing or invalid '{self.price_field}'")
        return price
