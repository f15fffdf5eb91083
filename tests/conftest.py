"""Shared fixtures and fakes for the test suite (no network)."""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import Mock

import pytest

from arbie.arb.engine import ArbEngine, to_token
from arbie.chain.execution import ConfirmationResult, ExecutionSink
from arbie.core.config import EngineConfig
from arbie.core.errors import ExecutionRejected
from arbie.core.timeutil import now_utc
from arbie.domain.models import ArbitrageOpportunity, PriceQuote, PriceSnapshot, Token, Venue
from arbie.providers.base import BasePriceSource
from arbie.providers.oracle import PriceOracleClient

USD = Token("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USD", 6)
ETH = Token("0x4200000000000000000000000000000000000006", "ETH", 18)
USDC = Token("0x1111111111111111111111111111111111111111", "USDC", 6)
BASE = Token("0x2222222222222222222222222222222222222222", "BASE", 18)

GWEI = 10**9


def micro(value: str) -> int:
    """'0.995' -> 995000"""
    return int(Decimal(value) * 10**6)


def make_opportunity(
    token: Token = ETH,
    buy: int = 1_000_000,
    sell: int = 1_010_000,
    source: str = "uniswap",
    target: str = "sushiswap",
) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        token=token,
        source_venue=source,
        target_venue=target,
        buy_price=buy,
        sell_price=sell,
    )


def make_snapshot(
    prices: dict[Token, dict[str, int]],
    gas_price_wei: Optional[int] = GWEI,
) -> PriceSnapshot:
    """Snapshot from {token: {venue: micro price}}."""
    observed = now_utc()
    quotes = [
        PriceQuote(token=token, venue=venue, price=price, observed_at=observed)
        for token, venues in prices.items()
        for venue, price in venues.items()
    ]
    return PriceSnapshot.build(
        cycle_id="cycle_test",
        tokens=list(prices),
        quotes=quotes,
        failures={},
        gas_price_wei=gas_price_wei,
        started_at=observed,
    )


class FakeSource(BasePriceSource):
    """Price source answering from a symbol -> price (or exception) table."""

    kind = "fake"

    def __init__(self, name: str, prices: dict[str, Any], delay: float = 0.0):
        super().__init__(Venue(name=name, kind=self.kind), USD)
        self.prices = prices
        self.delay = delay
        self.calls = 0

    async def quote(self, token: Token) -> int:
        self.calls += 1
        value = self.prices.get(token.symbol)
        if value is None:
            raise self._unavailable(token, "not listed")
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(value, Exception):
            raise value
        return value


class FakeGasOracle:
    def __init__(self, price: Any = GWEI):
        self.price = price

    async def gas_price_wei(self) -> int:
        if isinstance(self.price, Exception):
            raise self.price
        return self.price


class ScriptedSink(ExecutionSink):
    """
    Execution sink with scripted behaviour.

    gate: if set, submit() blocks until the event is set
    reject: submit() raises ExecutionRejected
    confirm_error: await_confirmation() raises this
    confirm_delay: await_confirmation() sleeps this long first
    """

    def __init__(
        self,
        gate: Optional[asyncio.Event] = None,
        reject: bool = False,
        confirmed: bool = True,
        confirm_error: Optional[Exception] = None,
        confirm_delay: float = 0.0,
    ):
        self.gate = gate
        self.reject = reject
        self.confirmed = confirmed
        self.confirm_error = confirm_error
        self.confirm_delay = confirm_delay
        self.submitted: list[ArbitrageOpportunity] = []
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}

    async def submit(self, opportunity: ArbitrageOpportunity, amount: Decimal) -> str:
        address = opportunity.token.address
        self.active[address] = self.active.get(address, 0) + 1
        self.max_active[address] = max(self.max_active.get(address, 0), self.active[address])
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.reject:
                raise ExecutionRejected("simulation reverted")
            self.submitted.append(opportunity)
            return f"0x{len(self.submitted):064x}"
        finally:
            self.active[address] -= 1

    async def await_confirmation(self, tx_hash: str, timeout: float) -> ConfirmationResult:
        if self.confirm_delay:
            await asyncio.sleep(self.confirm_delay)
        if self.confirm_error is not None:
            raise self.confirm_error
        return ConfirmationResult(confirmed=self.confirmed, block_number=123)


def engine_config_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "quote_token": {"address": USD.address.lower(), "symbol": "USD", "decimals": 6},
        "tokens": [
            {"address": USDC.address, "symbol": "USDC", "decimals": 6},
            {"address": ETH.address, "symbol": "ETH", "decimals": 18},
        ],
        "venues": [
            {"name": "uniswap", "kind": "fake"},
            {"name": "sushiswap", "kind": "fake"},
            {"name": "aerodrome", "kind": "fake"},
        ],
        "polling_interval": 0.05,
        "call_timeout": 0.5,
        "submit_timeout": 1.0,
        "confirmation_timeout": 1.0,
    }
    data.update(overrides)
    return data


def make_engine_config(**overrides: Any) -> EngineConfig:
    return EngineConfig.model_validate(engine_config_data(**overrides))


def make_engine(
    config: EngineConfig,
    sources: list[FakeSource],
    sink: Optional[ExecutionSink] = None,
    gas_oracle: Any = None,
    **kwargs: Any,
) -> ArbEngine:
    tokens = [to_token(t) for t in config.tokens]
    oracle = PriceOracleClient({s.name: s for s in sources}, tokens, timeout=config.call_timeout)
    return ArbEngine(
        config,
        oracle,
        sink or ScriptedSink(),
        gas_oracle=gas_oracle if gas_oracle is not None else FakeGasOracle(),
        **kwargs,
    )


@pytest.fixture
def mock_settings():
    """Create mock settings."""
    settings = Mock()
    settings.rpc_url = "https://mainnet.base.org"
    settings.private_key = None
    settings.arbitrage_contract_address = None
    settings.dry_run = True
    settings.config_path = None
    return settings
