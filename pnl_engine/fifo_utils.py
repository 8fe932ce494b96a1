"""
Cost-basis matching for trade-level realized profit.

Trades are grouped by market_key (market name + outcome). Within a group
the BUYs are folded, oldest first, into a running weighted-average cost,
then each SELL (oldest first) is matched against the remaining inventory
at that average cost. Matched SELLs get a ``profit`` rounded to cents;
SELLs with no inventory left stay unattributed.
"""

import hashlib
import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List

from pnl_engine.models import Trade, TradeStats
from pnl_engine.shared_utils import EPOCH, safe_float

logger = logging.getLogger(__name__)


def trade_time(trade: Trade):
    # Trades without a usable timestamp sort at the Unix epoch
    return trade.timestamp or EPOCH


def synthesize_trade_id(trade: Trade, index: int) -> str:
    """
    Deterministic id for a trade the source returned without one.

    Built from timestamp, market key, outcome, price, size and the trade's
    position in the input list, so repeated calls with the same input
    produce the same id.
    """
    parts = [
        trade_time(trade).isoformat(),
        trade.market_key,
        trade.outcome,
        repr(safe_float(trade.price)),
        repr(safe_float(trade.size)),
        str(index),
    ]
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()
    return f"trade-{digest[:16]}"


def ensure_trade_ids(trades: List[Trade]) -> List[Trade]:
    """Copies of ``trades`` where every trade has an id."""
    result = []
    for index, trade in enumerate(trades):
        if trade.id:
            result.append(replace(trade))
        else:
            result.append(replace(trade, id=synthesize_trade_id(trade, index)))
    return result


def group_by_market(trades: List[Trade]) -> Dict[str, List[int]]:
    """Map market_key -> indices into ``trades``, in first-seen order."""
    groups: Dict[str, List[int]] = OrderedDict()
    for index, trade in enumerate(trades):
        groups.setdefault(trade.market_key, []).append(index)
    return groups


def attribute_realized_pnl(trades: List[Trade]) -> List[Trade]:
    """
    Attach realized profit to SELL trades.

    Args:
        trades: Flat list of trades across any number of markets

    Returns:
        New list in the same order as the input. Every trade has an id;
        SELLs matched against BUY inventory have ``profit`` set to
        (sell_price - avg_buy_price) * matched_size rounded to 2 dp.

    Never raises. Unparseable prices and sizes count as 0.
    """
    enriched = ensure_trade_ids(trades)
    unmatched = 0

    for market_key, indices in group_by_market(enriched).items():
        buys = [i for i in indices if enriched[i].side == "BUY"]
        sells = [i for i in indices if enriched[i].side == "SELL"]

        # Nothing to attribute
        if not sells:
            continue

        remaining_size = 0.0
        total_cost = 0.0
        avg_buy_price = 0.0

        for i in sorted(buys, key=lambda idx: trade_time(enriched[idx])):
            buy = enriched[i]
            total_cost += safe_float(buy.price) * safe_float(buy.size)
            remaining_size += safe_float(buy.size)
            if remaining_size > 0:
                avg_buy_price = total_cost / remaining_size

        for i in sorted(sells, key=lambda idx: trade_time(enriched[idx])):
            sell = enriched[i]
            matched_size = min(safe_float(sell.size), remaining_size)
            if matched_size <= 0:
                unmatched += 1
                continue

            profit = (safe_float(sell.price) - avg_buy_price) * matched_size
            enriched[i] = replace(sell, profit=round(profit, 2))

            remaining_size -= matched_size
            total_cost -= avg_buy_price * matched_size
            if remaining_size > 0:
                avg_buy_price = total_cost / remaining_size

    if unmatched:
        logger.warning(
            f"{unmatched} SELL trades had no matching BUY inventory "
            f"(history likely predates the fetched window); left unattributed"
        )

    return enriched


def count_unmatched_sells(trades: List[Trade]) -> int:
    """SELL trades that carry no attributed profit."""
    return sum(1 for t in trades if t.side == "SELL" and t.profit is None)


def summarize_trade_profits(trades: List[Trade]) -> TradeStats:
    """
    Win/loss statistics over attributed SELL profits.

    Trades are walked in timestamp order so the win streak reflects the
    order the positions were closed. Zero-profit SELLs neither win nor
    lose and do not break a streak.
    """
    profits = [
        t.profit for t in sorted(trades, key=trade_time)
        if t.side == "SELL" and t.profit is not None
    ]
    if not profits:
        return TradeStats()

    wins = 0
    losses = 0
    streak = 0
    best_streak = 0
    for profit in profits:
        if profit > 0:
            wins += 1
            streak += 1
            best_streak = max(best_streak, streak)
        elif profit < 0:
            losses += 1
            streak = 0

    decided = wins + losses
    return TradeStats(
        wins=wins,
        losses=losses,
        win_rate=round(100 * wins / decided, 1) if decided else 0.0,
        best_trade=round(max(profits), 2),
        worst_trade=round(min(profits), 2),
        win_streak=best_streak,
    )


def total_volume(trades: List[Trade]) -> float:
    """Sum of price * size over all trades."""
    return round(sum(safe_float(t.price) * safe_float(t.size) for t in trades), 2)
