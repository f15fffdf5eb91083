"""Tests for spread detection, ranking and the profitability filter."""

import random
from decimal import Decimal

import pytest

from arbie.arb.detector import SpreadDetector, best_per_token, rank
from arbie.arb.filter import ProfitabilityFilter

from conftest import BASE, ETH, GWEI, USDC, make_engine_config, make_opportunity, make_snapshot, micro


@pytest.fixture
def detector():
    return SpreadDetector()


@pytest.fixture
def usdc_snapshot():
    return make_snapshot({
        USDC: {
            "uniswap": micro("0.995"),
            "sushiswap": micro("1.005"),
            "aerodrome": micro("0.995"),
        }
    })


class TestSpreadDetector:
    """Tests for SpreadDetector."""

    def test_usdc_scenario(self, detector, usdc_snapshot):
        """Two cheap venues against one dear venue; the flat pair yields nothing."""
        opportunities = list(detector.detect(usdc_snapshot))

        routes = {(o.source_venue, o.target_venue) for o in opportunities}
        assert routes == {("aerodrome", "sushiswap"), ("uniswap", "sushiswap")}
        for opp in opportunities:
            assert opp.potential_profit == micro("0.010")
            assert round(opp.profit_percentage, 2) == Decimal("1.01")

    def test_equal_prices_yield_nothing(self, detector):
        snapshot = make_snapshot({ETH: {"uniswap": 3_000_000_000, "sushiswap": 3_000_000_000}})
        assert list(detector.detect(snapshot)) == []

    def test_single_quote_yields_nothing(self, detector):
        """A token quoted by one venue only never produces a one-sided opportunity."""
        snapshot = make_snapshot({
            ETH: {"uniswap": 3_000_000_000},
            USDC: {"uniswap": micro("0.99"), "sushiswap": micro("1.01")},
        })
        opportunities = list(detector.detect(snapshot))
        assert [o.token.symbol for o in opportunities] == ["USDC"]

    def test_buy_low_sell_high(self, detector):
        snapshot = make_snapshot({ETH: {"sushiswap": 2_990_000_000, "uniswap": 3_010_000_000}})
        (opp,) = detector.detect(snapshot)
        assert opp.source_venue == "sushiswap"
        assert opp.buy_price == 2_990_000_000
        assert opp.target_venue == "uniswap"
        assert opp.sell_price == 3_010_000_000

    def test_detect_is_lazy(self, detector, usdc_snapshot):
        generator = detector.detect(usdc_snapshot)
        first = next(generator)
        assert first.token == USDC
        assert len(list(generator)) == 1

    def test_properties_hold_for_random_snapshots(self, detector):
        """No duplicate (token, venue pair), profit > 0, sell is the higher quote."""
        rng = random.Random(7)
        venues = ["aerodrome", "alienbase", "sushiswap", "uniswap", "baseswap"]

        for _ in range(100):
            prices = {
                token: {
                    venue: rng.randint(990_000, 1_010_000)
                    for venue in rng.sample(venues, rng.randint(0, len(venues)))
                }
                for token in (ETH, USDC, BASE)
            }
            snapshot = make_snapshot(prices)

            seen = set()
            for opp in detector.detect(snapshot):
                key = (opp.token.address, opp.venue_pair)
                assert key not in seen
                seen.add(key)

                assert opp.potential_profit == opp.sell_price - opp.buy_price > 0
                quotes = prices[opp.token]
                assert opp.buy_price == quotes[opp.source_venue]
                assert opp.sell_price == quotes[opp.target_venue]
                assert opp.sell_price == max(quotes[opp.source_venue], quotes[opp.target_venue])

            expected = sum(
                1
                for quotes in prices.values()
                for i, a in enumerate(sorted(quotes))
                for b in sorted(quotes)[i + 1:]
                if quotes[a] != quotes[b]
            )
            assert len(seen) == expected


class TestRanking:
    """Tests for rank() and best_per_token()."""

    def test_rank_best_percentage_first(self):
        small = make_opportunity(token=ETH, buy=1_000_000, sell=1_006_000)
        large = make_opportunity(token=USDC, buy=1_000_000, sell=1_020_000)
        assert rank([small, large]) == [large, small]

    def test_rank_ties_are_deterministic(self, usdc_snapshot):
        opportunities = list(SpreadDetector().detect(usdc_snapshot))
        ranked = rank(reversed(opportunities))
        assert [o.source_venue for o in ranked] == ["aerodrome", "uniswap"]

    def test_best_per_token_keeps_first(self, usdc_snapshot):
        ranked = rank(SpreadDetector().detect(usdc_snapshot))
        selected = best_per_token(ranked)
        assert len(selected) == 1
        assert selected[0] is ranked[0]


class TestProfitabilityFilter:
    """Tests for ProfitabilityFilter."""

    def test_usdc_scenario_threshold(self, usdc_snapshot):
        """With 0.5% minimum, the spread passes and exactly one route is selected."""
        profit_filter = ProfitabilityFilter(min_profit_percentage=Decimal("0.5"))
        candidates = list(SpreadDetector().detect(usdc_snapshot))

        passed = profit_filter.filter(candidates, usdc_snapshot.gas_price_wei)
        selected = best_per_token(rank(passed))

        assert len(selected) == 1
        assert selected[0].target_venue == "sushiswap"
        assert selected[0].source_venue in ("uniswap", "aerodrome")
        assert selected[0].potential_profit == micro("0.010")

    def test_percentage_boundary_is_inclusive(self):
        profit_filter = ProfitabilityFilter(min_profit_percentage=Decimal("0.5"))
        exactly = make_opportunity(buy=1_000_000, sell=1_005_000)
        below = make_opportunity(buy=1_000_000, sell=1_004_999)
        assert profit_filter.filter([exactly, below], GWEI) == [exactly]

    def test_absolute_threshold(self):
        profit_filter = ProfitabilityFilter(min_profit_absolute=20_000, min_profit_percentage=Decimal("0"))
        opp = make_opportunity(buy=1_000_000, sell=1_010_000)
        assert profit_filter.filter([opp], GWEI) == []

    def test_gas_ceiling(self):
        profit_filter = ProfitabilityFilter(max_gas_price_wei=15 * GWEI)
        opp = make_opportunity(buy=1_000_000, sell=1_010_000)
        assert profit_filter.filter([opp], 15 * GWEI) == [opp]
        assert profit_filter.filter([opp], 15 * GWEI + 1) == []

    def test_unknown_gas_rejects_everything(self):
        profit_filter = ProfitabilityFilter()
        opp = make_opportunity(buy=1_000_000, sell=1_100_000)
        assert profit_filter.filter([opp], None) == []

    def test_idempotent(self):
        rng = random.Random(11)
        profit_filter = ProfitabilityFilter(min_profit_absolute=3_000, min_profit_percentage=Decimal("0.4"))
        opportunities = [
            make_opportunity(buy=1_000_000, sell=1_000_000 + rng.randint(1, 10_000))
            for _ in range(200)
        ]
        once = profit_filter.filter(opportunities, GWEI)
        assert profit_filter.filter(once, GWEI) == once
        assert 0 < len(once) < len(opportunities)

    def test_from_config(self):
        config = make_engine_config(
            min_profit_absolute="0.002",
            min_profit_percentage="0.75",
            max_gas_price_gwei=20,
        )
        profit_filter = ProfitabilityFilter.from_config(config)
        assert profit_filter.min_profit_absolute == 2_000
        assert profit_filter.min_profit_percentage == Decimal("0.75")
        assert profit_filter.max_gas_price_wei == 20 * GWEI
