"""Tests for the price oracle and snapshot builder."""

import asyncio

import pytest

from arbie.arb.detector import SpreadDetector
from arbie.arb.snapshot import SnapshotBuilder
from arbie.core.errors import ConnectionFailure, QuoteUnavailable
from arbie.domain.models import FailureCode, Token
from arbie.providers.oracle import GasOracle, PriceOracleClient

from conftest import ETH, GWEI, USDC, FakeGasOracle, FakeSource, micro


def build_oracle(*sources: FakeSource, timeout: float = 0.5) -> PriceOracleClient:
    return PriceOracleClient({s.name: s for s in sources}, [ETH, USDC], timeout=timeout)


class TestPriceOracleClient:
    """Tests for PriceOracleClient."""

    @pytest.mark.asyncio
    async def test_get_price(self):
        oracle = build_oracle(FakeSource("uniswap", {"ETH": 3_000_000_000}))
        quote = await oracle.get_price(ETH, "uniswap")
        assert quote.price == 3_000_000_000
        assert quote.venue == "uniswap"
        assert quote.token == ETH

    @pytest.mark.asyncio
    async def test_unknown_venue_or_token(self):
        oracle = build_oracle(FakeSource("uniswap", {"ETH": 1}))
        with pytest.raises(QuoteUnavailable):
            await oracle.get_price(ETH, "curve")

        stranger = Token("0x3333333333333333333333333333333333333333", "XYZ", 18)
        with pytest.raises(QuoteUnavailable):
            await oracle.get_price(stranger, "uniswap")

    @pytest.mark.asyncio
    async def test_timeout_is_connection_failure(self):
        oracle = build_oracle(FakeSource("slow", {"ETH": 1_000_000}, delay=1.0), timeout=0.01)
        with pytest.raises(ConnectionFailure) as exc_info:
            await oracle.get_price(ETH, "slow")
        assert exc_info.value.details["venue"] == "slow"

    @pytest.mark.asyncio
    async def test_never_returns_zero(self):
        oracle = build_oracle(FakeSource("broken", {"ETH": 0}))
        with pytest.raises(QuoteUnavailable):
            await oracle.get_price(ETH, "broken")

    def test_venue_names_sorted(self):
        oracle = build_oracle(FakeSource("uniswap", {}), FakeSource("aerodrome", {}))
        assert oracle.venue_names == ["aerodrome", "uniswap"]


class TestGasOracle:
    """Tests for GasOracle."""

    @pytest.mark.asyncio
    async def test_without_connection(self):
        with pytest.raises(ConnectionFailure):
            await GasOracle(None).gas_price_wei()


class TestSnapshotBuilder:
    """Tests for SnapshotBuilder."""

    @pytest.mark.asyncio
    async def test_collects_every_pair(self):
        uniswap = FakeSource("uniswap", {"ETH": 3_000_000_000, "USDC": micro("0.999")})
        sushiswap = FakeSource("sushiswap", {"ETH": 3_010_000_000, "USDC": micro("1.001")})
        builder = SnapshotBuilder(build_oracle(uniswap, sushiswap), [ETH, USDC], FakeGasOracle())

        snapshot = await builder.build("cycle_1")

        assert snapshot.cycle_id == "cycle_1"
        assert snapshot.quote_count == 4
        assert snapshot.failures == {}
        assert snapshot.gas_price_wei == GWEI
        assert uniswap.calls == 2 and sushiswap.calls == 2

    @pytest.mark.asyncio
    async def test_partial_failure_excludes_token(self):
        """Venue B fails for ETH, venue A succeeds: ETH yields no opportunity."""
        venue_a = FakeSource("venue_a", {"ETH": 3_000_000_000, "USDC": micro("0.99")})
        venue_b = FakeSource("venue_b", {
            "ETH": ConnectionFailure("connection reset", venue="venue_b"),
            "USDC": micro("1.01"),
        })
        builder = SnapshotBuilder(build_oracle(venue_a, venue_b), [ETH, USDC], FakeGasOracle())

        snapshot = await builder.build()

        assert snapshot.failures == {(ETH.address, "venue_b"): FailureCode.CONNECTION_FAILURE}
        assert snapshot.connection_failures == 1
        assert "venue_b" not in snapshot.quotes_for(ETH.address)

        opportunities = list(SpreadDetector().detect(snapshot))
        assert [o.token.symbol for o in opportunities] == ["USDC"]

    @pytest.mark.asyncio
    async def test_unavailable_quote_recorded(self):
        venue_a = FakeSource("venue_a", {"ETH": 3_000_000_000})
        venue_b = FakeSource("venue_b", {})
        builder = SnapshotBuilder(build_oracle(venue_a, venue_b), [ETH], FakeGasOracle())

        snapshot = await builder.build()

        assert snapshot.failures[(ETH.address, "venue_b")] == FailureCode.QUOTE_UNAVAILABLE
        assert snapshot.connection_failures == 0

    @pytest.mark.asyncio
    async def test_slow_venue_absent_cycle_completes(self):
        """A venue call exceeding its timeout is absent; the snapshot still completes."""
        fast = FakeSource("fast", {"ETH": 3_000_000_000})
        slow = FakeSource("slow", {"ETH": 3_100_000_000}, delay=5.0)
        builder = SnapshotBuilder(build_oracle(fast, slow, timeout=0.05), [ETH], FakeGasOracle())

        snapshot = await asyncio.wait_for(builder.build(), timeout=2.0)

        assert list(snapshot.quotes_for(ETH.address)) == ["fast"]
        assert snapshot.failures[(ETH.address, "slow")] == FailureCode.CONNECTION_FAILURE

    @pytest.mark.asyncio
    async def test_gas_failure_leaves_gas_unknown(self):
        gas = FakeGasOracle(ConnectionFailure("rpc down", venue="rpc"))
        builder = SnapshotBuilder(build_oracle(FakeSource("uniswap", {"ETH": 1_000_000})), [ETH], gas)

        snapshot = await builder.build()

        assert snapshot.gas_price_wei is None
        assert snapshot.quote_count == 1

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """Never more than `concurrency` fetches run at once."""
        running = 0
        peak = 0

        class CountingSource(FakeSource):
            async def quote(self, token):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return 1_000_000

        sources = [CountingSource(f"venue_{i}", {}) for i in range(6)]
        builder = SnapshotBuilder(build_oracle(*sources), [ETH, USDC], FakeGasOracle(), concurrency=3)

        snapshot = await builder.build()

        assert snapshot.quote_count == 12
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        slow = FakeSource("slow", {"ETH": 1_000_000}, delay=10.0)
        builder = SnapshotBuilder(build_oracle(slow, timeout=30.0), [ETH], FakeGasOracle())

        task = asyncio.create_task(builder.build())
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
