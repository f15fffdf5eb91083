"""
Constant-product pool price sources.

Reads pool reserves through AsyncWeb3:
- UniswapV2Source: factory.getPair(a, b) -> pair.getReserves()
  (Uniswap V2, Sushiswap, Alienbase and other V2 forks)
- AerodromeSource: factory.getPool(a, b, stable) -> pool.getReserves()

Pool addresses and token ordering never change, so they are cached;
reserves are read fresh every call.
"""

from typing import Optional

from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from arbie.chain.connection import ConnectionManager
from arbie.core.cache import CacheManager, get_pool_cache
from arbie.core.errors import ConnectionFailure, PriceSourceError
from arbie.domain.models import Token, Venue
from arbie.providers.base import BasePriceSource, SourceContext, reserves_to_price

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

V2_FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
        ],
        "name": "getPair",
        "outputs": [{"internalType": "address", "name": "pair", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

AERODROME_FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
            {"internalType": "bool", "name": "stable", "type": "bool"},
        ],
        "name": "getPool",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

PAIR_ABI = [
    {
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"internalType": "uint256", "name": "reserve0", "type": "uint256"},
            {"internalType": "uint256", "name": "reserve1", "type": "uint256"},
            {"internalType": "uint256", "name": "blockTimestampLast", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "token0",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class UniswapV2Source(BasePriceSource):
    """Price from a Uniswap V2-style pair's reserves."""

    kind = "uniswap_v2"
    factory_abi = V2_FACTORY_ABI

    def __init__(
        self,
        venue: Venue,
        quote_token: Token,
        connection: ConnectionManager,
        cache: Optional[CacheManager] = None,
    ):
        super().__init__(venue, quote_token)
        self.connection = connection
        self.cache = cache or get_pool_cache(venue.name)

        self.factory_address = venue.addresses.get("factory")
        if not self.factory_address:
            raise ValueError(f"Venue {venue.name} ({self.kind}) needs a 'factory' address")

    @classmethod
    def from_venue(cls, venue: Venue, context: SourceContext) -> "UniswapV2Source":
        if context.connection is None:
            raise ValueError(f"Venue {venue.name} needs an RPC connection")
        return cls(venue, context.quote_token, context.connection)

    async def _lookup_pool(self, token: Token) -> str:
        factory = self.connection.w3.eth.contract(address=self.factory_address, abi=self.factory_abi)
        return await factory.functions.getPair(token.address, self.quote_token.address).call()

    async def _pool_for(self, token: Token) -> tuple[str, bool]:
        """Pool address and whether the traded token is token0."""
        cached = self.cache.get(token.address)
        if cached is not None:
            return cached

        pool = await self._lookup_pool(token)
        if not pool or pool == ZERO_ADDRESS:
            raise self._unavailable(token, "no pool")

        pair = self.connection.w3.eth.contract(address=pool, abi=PAIR_ABI)
        token0 = await pair.functions.token0().call()
        entry = (pool, token0.lower() == token.address.lower())
        self.cache.set(token.address, entry)
        return entry

    async def quote(self, token: Token) -> int:
        try:
            pool, token_is_token0 = await self._pool_for(token)
            pair = self.connection.w3.eth.contract(address=pool, abi=PAIR_ABI)
            reserve0, reserve1, _ = await pair.functions.getReserves().call()
        except PriceSourceError:
            raise
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise self._unavailable(token, f"bad contract response: {e}") from e
        except Exception as e:
            raise ConnectionFailure(
                f"{self.name}: RPC call failed for {token.symbol}: {e}",
                venue=self.name,
                token=token.address,
            ) from e

        reserve_token, reserve_quote = (reserve0, reserve1) if token_is_token0 else (reserve1, reserve0)
        price = reserves_to_price(
            reserve_token,
            reserve_quote,
            token.decimals,
            self.quote_token.decimals,
        )
        if price is None:
            raise self._unavailable(token, "empty reserves")
        return price


class AerodromeSource(UniswapV2Source):
    """Price from an Aerodrome (Solidly-style) pool's reserves."""

    kind = "aerodrome"
    factory_abi = AERODROME_FACTORY_ABI

    @property
    def stable(self) -> bool:
        return bool(self.venue.options.get("stable", False))

    async def _lookup_pool(self, token: Token) -> str:
        factory = self.connection.w3.eth.contract(address=self.factory_address, abi=self.factory_abi)
        return await factory.functions.getPool(
            token.address, self.quote_token.address, self.stable
        ).call()
