"""Tests for pnl_engine/fifo_utils.py"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timedelta, timezone

import pytest

from pnl_engine.fifo_utils import (
    attribute_realized_pnl,
    count_unmatched_sells,
    ensure_trade_ids,
    summarize_trade_profits,
    synthesize_trade_id,
    total_volume,
)
from pnl_engine.models import Trade

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_trade(side, size, price, minutes=0, market="X", outcome="YES", trade_id=None):
    return Trade(
        id=trade_id,
        market_name=market,
        outcome=outcome,
        side=side,
        price=price,
        size=size,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def sell_profits(trades):
    return [t.profit for t in trades if t.side == "SELL"]


class TestScenarios:
    def test_single_buy_then_sell(self):
        trades = [make_trade("BUY", 10, 0.40, 0), make_trade("SELL", 10, 0.60, 1)]
        result = attribute_realized_pnl(trades)
        assert result[1].profit == 2.00
        assert result[0].profit is None

    def test_weighted_average_of_two_buys(self):
        trades = [
            make_trade("BUY", 5, 0.30, 0),
            make_trade("BUY", 5, 0.50, 1),
            make_trade("SELL", 10, 0.70, 2),
        ]
        result = attribute_realized_pnl(trades)
        assert result[2].profit == 3.00

    def test_sell_without_buy_is_unattributed(self):
        trades = [make_trade("SELL", 10, 0.60, 0)]
        result = attribute_realized_pnl(trades)
        assert result[0].profit is None
        assert count_unmatched_sells(result) == 1

    def test_unmatched_group_does_not_affect_other_groups(self):
        trades = [
            make_trade("SELL", 10, 0.60, 0, market="Y"),
            make_trade("BUY", 10, 0.40, 1, market="X"),
            make_trade("SELL", 10, 0.60, 2, market="X"),
        ]
        result = attribute_realized_pnl(trades)
        assert result[0].profit is None
        assert result[2].profit == 2.00


class TestMatching:
    def test_partial_match_then_exhausted(self):
        trades = [
            make_trade("BUY", 5, 0.40, 0),
            make_trade("SELL", 3, 0.50, 1),
            make_trade("SELL", 4, 0.60, 2),
            make_trade("SELL", 1, 0.90, 3),
        ]
        result = attribute_realized_pnl(trades)
        assert result[1].profit == pytest.approx(0.30)
        # Only 2 units of inventory remain for the second sell
        assert result[2].profit == pytest.approx(0.40)
        assert result[3].profit is None

    def test_matched_size_never_exceeds_buy_size(self):
        trades = [
            make_trade("BUY", 10, 0.50, 0),
            make_trade("SELL", 6, 0.60, 1),
            make_trade("SELL", 6, 0.60, 2),
            make_trade("SELL", 6, 0.60, 3),
        ]
        result = attribute_realized_pnl(trades)
        profits = sell_profits(result)
        assert profits[0] == pytest.approx(0.60)
        assert profits[1] == pytest.approx(0.40)
        assert profits[2] is None
        # sum of profit equals (price - avg) * total matched (10 units)
        assert sum(p for p in profits if p is not None) == pytest.approx((0.60 - 0.50) * 10)

    def test_sells_matched_in_timestamp_order(self):
        trades = [
            make_trade("BUY", 10, 0.50, 0),
            make_trade("SELL", 8, 0.90, 30),
            make_trade("SELL", 8, 0.10, 20),
        ]
        result = attribute_realized_pnl(trades)
        # The earlier sell (minute 20) gets the first 8 units
        assert result[2].profit == pytest.approx(-3.20)
        assert result[1].profit == pytest.approx(0.80)

    def test_groups_are_case_sensitive(self):
        trades = [
            make_trade("BUY", 10, 0.40, 0, market="X"),
            make_trade("SELL", 10, 0.60, 1, market="x"),
        ]
        result = attribute_realized_pnl(trades)
        assert result[1].profit is None

    def test_outcomes_are_separate_groups(self):
        trades = [
            make_trade("BUY", 10, 0.40, 0, outcome="YES"),
            make_trade("SELL", 10, 0.60, 1, outcome="NO"),
        ]
        result = attribute_realized_pnl(trades)
        assert result[1].profit is None

    def test_profit_is_rounded_to_cents(self):
        trades = [make_trade("BUY", 3, 0.333, 0), make_trade("SELL", 3, 0.5, 1)]
        result = attribute_realized_pnl(trades)
        assert result[1].profit == 0.50

    def test_input_trades_not_mutated(self):
        trades = [make_trade("BUY", 10, 0.40, 0), make_trade("SELL", 10, 0.60, 1)]
        attribute_realized_pnl(trades)
        assert trades[1].profit is None
        assert trades[0].id is None

    def test_order_preserved(self):
        trades = [
            make_trade("SELL", 10, 0.60, 5, trade_id="s"),
            make_trade("BUY", 10, 0.40, 0, trade_id="b"),
        ]
        result = attribute_realized_pnl(trades)
        assert [t.id for t in result] == ["s", "b"]
        assert result[0].profit == 2.00

    def test_empty_input(self):
        assert attribute_realized_pnl([]) == []


class TestTradeIds:
    def test_synthesized_id_is_deterministic(self):
        trades = [make_trade("BUY", 10, 0.40, 0), make_trade("SELL", 10, 0.60, 1)]
        first = [t.id for t in attribute_realized_pnl(trades)]
        second = [t.id for t in attribute_realized_pnl(trades)]
        assert first == second
        assert all(trade_id.startswith("trade-") for trade_id in first)

    def test_identical_trades_get_distinct_ids(self):
        trade = make_trade("BUY", 10, 0.40, 0)
        assert synthesize_trade_id(trade, 0) != synthesize_trade_id(trade, 1)

    def test_existing_ids_are_kept(self):
        trades = [make_trade("BUY", 10, 0.40, 0, trade_id="0xabc")]
        assert ensure_trade_ids(trades)[0].id == "0xabc"


class TestSummaries:
    def test_trade_stats(self):
        trades = [
            make_trade("SELL", 1, 0, 0),
            make_trade("SELL", 1, 0, 1),
            make_trade("SELL", 1, 0, 2),
            make_trade("SELL", 1, 0, 3),
        ]
        for trade, profit in zip(trades, [2.0, -1.0, 3.0, 4.0]):
            trade.profit = profit

        stats = summarize_trade_profits(trades)
        assert stats.wins == 3
        assert stats.losses == 1
        assert stats.win_rate == 75.0
        assert stats.best_trade == 4.0
        assert stats.worst_trade == -1.0
        assert stats.win_streak == 2

    def test_trade_stats_without_profits(self):
        stats = summarize_trade_profits([make_trade("BUY", 1, 0.5, 0)])
        assert stats.win_rate == 0.0
        assert stats.win_streak == 0

    def test_total_volume(self):
        trades = [make_trade("BUY", 10, 0.40, 0), make_trade("SELL", 10, 0.60, 1)]
        assert total_volume(trades) == 10.0


class TestMalformed:
    def test_unparseable_price_counts_as_zero(self):
        buy = make_trade("BUY", 10, "abc", 0)
        sell = make_trade("SELL", 10, 0.50, 1)
        result = attribute_realized_pnl([buy, sell])

        assert result[0].id.startswith("trade-")
        assert result[1].profit == 5.0

    def test_missing_size_leaves_sell_unattributed(self):
        trades = [make_trade("BUY", None, 0.40, 0), make_trade("SELL", None, 0.60, 1)]
        result = attribute_realized_pnl(trades)

        assert all(t.id for t in result)
        assert result[1].profit is None
        assert count_unmatched_sells(result) == 1

    def test_missing_timestamp_sorts_first(self):
        buy = make_trade("BUY", 10, 0.40, 0)
        buy.timestamp = None
        sell = make_trade("SELL", 4, 0.60, -60)
        result = attribute_realized_pnl([sell, buy])

        # The undated BUY is treated as the oldest trade, so it covers the SELL
        assert result[0].profit == 0.8
        assert result[1].id == synthesize_trade_id(buy, 1)
        assert summarize_trade_profits(result).wins == 1

    def test_ids_stable_with_malformed_fields(self):
        trade = make_trade("SELL", None, "n/a", 0)
        trade.timestamp = None
        assert synthesize_trade_id(trade, 0) == synthesize_trade_id(trade, 0)
