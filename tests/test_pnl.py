"""Tests for pnl_engine/pnl_utils.py"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from pnl_engine.models import ClosedPosition, OpenPosition, SubgraphPosition
from pnl_engine.pnl_utils import (
    aggregate_pnl,
    best_and_worst_closed,
    gather_sources,
    summarize_realized,
    summarize_unrealized,
)
from pnl_engine.shared_utils import COLLATERAL_SCALE


def subgraph(pnl_usdc):
    return SubgraphPosition(token_id="t", realized_pnl=pnl_usdc * COLLATERAL_SCALE)


def open_position(size, cash_pnl, current_value=0.0):
    return OpenPosition(size=size, initial_value=0.0, current_value=current_value, cash_pnl=cash_pnl)


def closed(pnl):
    return ClosedPosition(realized_pnl=pnl, end_date=None, title="m")


class TestRealized:
    def test_scaled_from_fixed_point(self):
        total, count = summarize_realized([subgraph(12.5), subgraph(-2.5)])
        assert total == pytest.approx(10.0)
        assert count == 2

    def test_dust_positions_not_counted(self):
        positions = [
            SubgraphPosition(token_id="a", realized_pnl=5_000),    # 0.005 USDC
            SubgraphPosition(token_id="b", realized_pnl=10_000),   # exactly 0.01
            SubgraphPosition(token_id="c", realized_pnl=-20_000),  # -0.02
        ]
        total, count = summarize_realized(positions)
        assert count == 1
        assert total == pytest.approx(-0.02)


class TestUnrealized:
    def test_only_positions_above_epsilon(self):
        positions = [
            open_position(10, 3.0, current_value=7.0),
            open_position(0.01, 100.0, current_value=50.0),
            open_position(0.0, -4.0),
        ]
        unrealized, value, count = summarize_unrealized(positions)
        assert unrealized == pytest.approx(3.0)
        assert value == pytest.approx(7.0)
        assert count == 1


class TestAggregate:
    def test_total_is_sum_of_parts(self):
        summary = aggregate_pnl(
            [subgraph(100.0), subgraph(-20.0)],
            [open_position(5, 2.5, current_value=6.0), open_position(3, -1.25, current_value=1.0)],
        )
        assert summary.realized_pnl == pytest.approx(80.0)
        assert summary.unrealized_pnl == pytest.approx(1.25)
        assert summary.total_pnl == pytest.approx(81.25)
        assert summary.total_pnl == pytest.approx(summary.realized_pnl + summary.unrealized_pnl)
        assert summary.portfolio_value == pytest.approx(7.0)
        assert summary.open_positions_count == 2
        assert summary.closed_positions_count == 2

    def test_all_sources_empty(self):
        summary = aggregate_pnl([], [])
        assert summary.realized_pnl == 0
        assert summary.unrealized_pnl == 0
        assert summary.total_pnl == 0
        assert summary.open_positions_count == 0
        assert summary.closed_positions_count == 0

    def test_rounds_to_cents(self):
        summary = aggregate_pnl([subgraph(1.23456)], [open_position(1, 0.004)])
        assert summary.realized_pnl == 1.23
        assert summary.unrealized_pnl == 0.0
        assert summary.total_pnl == 1.23


class TestBestWorst:
    def test_best_and_worst(self):
        assert best_and_worst_closed([closed(120.0), closed(-20.0), closed(5.0)]) == (120.0, -20.0)

    def test_no_wins(self):
        assert best_and_worst_closed([closed(-3.0), closed(-7.5)]) == (0.0, -7.5)

    def test_empty(self):
        assert best_and_worst_closed([]) == (0.0, 0.0)


class TestGatherSources:
    def test_failed_source_degrades_to_empty(self):
        def ok(user_address, **kwargs):
            return [{"user": user_address}]

        def broken(user_address, **kwargs):
            raise RuntimeError("subgraph down")

        results = gather_sources("0xabc", fetchers={"open_positions": ok, "subgraph_positions": broken})
        assert results == {"open_positions": [{"user": "0xabc"}], "subgraph_positions": []}

    def test_passes_options_to_every_fetcher(self):
        seen = {}

        def make(name):
            def fetch(user_address, session=None, retry_policy=None, page_delay=None, cache=None):
                seen[name] = page_delay
                return []
            return fetch

        fetchers = {name: make(name) for name in ("a", "b", "c", "d")}
        results = gather_sources("0xabc", page_delay=0.0, fetchers=fetchers)

        assert set(results) == {"a", "b", "c", "d"}
        assert seen == {"a": 0.0, "b": 0.0, "c": 0.0, "d": 0.0}
