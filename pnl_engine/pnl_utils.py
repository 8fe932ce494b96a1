"""
PnL aggregation.

Realized PNL comes from the PnL subgraph (fixed-point, every settled
position), unrealized PNL and portfolio value from the Data API's open
positions. Their sum is the one authoritative total the timeline is
pinned to.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

import requests

from pnl_engine.cache_utils import TTLCache
from pnl_engine.fetch_utils import (
    RetryPolicy,
    fetch_activity,
    fetch_closed_positions,
    fetch_open_positions,
    fetch_subgraph_positions,
)
from pnl_engine.models import ClosedPosition, OpenPosition, PnLSummary, SubgraphPosition
from pnl_engine.shared_utils import COLLATERAL_SCALE, PAGE_DELAY, REALIZED_PNL_EPSILON

logger = logging.getLogger(__name__)

# Names of the four raw datasets gathered for one reconciliation
SOURCE_FETCHERS = {
    "subgraph_positions": fetch_subgraph_positions,
    "open_positions": fetch_open_positions,
    "closed_positions": fetch_closed_positions,
    "activity": fetch_activity,
}


def summarize_realized(positions: List[SubgraphPosition]) -> Tuple[float, int]:
    """
    Realized PNL in USDC and the number of closed positions.

    Positions whose |realized PNL| is dust (<= REALIZED_PNL_EPSILON after
    scaling) are not counted as closed positions.
    """
    total = 0.0
    closed = 0
    for position in positions:
        pnl = position.realized_pnl / COLLATERAL_SCALE
        if abs(pnl) > REALIZED_PNL_EPSILON:
            total += pnl
            closed += 1
    return total, closed


def summarize_unrealized(positions: List[OpenPosition]) -> Tuple[float, float, int]:
    """
    Unrealized PNL, portfolio value and open-position count.

    Only positions with size above OPEN_POSITION_EPSILON are open; the
    rest is dust left over from the upstream ledger.
    """
    unrealized = 0.0
    portfolio_value = 0.0
    open_count = 0
    for position in positions:
        if position.is_open:
            unrealized += position.cash_pnl
            portfolio_value += position.current_value
            open_count += 1
    return unrealized, portfolio_value, open_count


def aggregate_pnl(
    subgraph_positions: List[SubgraphPosition],
    open_positions: List[OpenPosition],
) -> PnLSummary:
    """
    Combine realized and unrealized figures into the headline summary.

    Values are rounded to cents, and total_pnl is the sum of the rounded
    parts so that total == realized + unrealized holds exactly.
    """
    realized, closed_count = summarize_realized(subgraph_positions)
    unrealized, portfolio_value, open_count = summarize_unrealized(open_positions)

    realized = round(realized, 2)
    unrealized = round(unrealized, 2)

    return PnLSummary(
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        total_pnl=round(realized + unrealized, 2),
        portfolio_value=round(portfolio_value, 2),
        open_positions_count=open_count,
        closed_positions_count=closed_count,
    )


def best_and_worst_closed(positions: List[ClosedPosition]) -> Tuple[float, float]:
    """
    Biggest win and biggest loss from the closed-position history.

    Best is the largest positive realized PNL (0 if there are no wins);
    worst is the smallest realized PNL overall (0 if empty).
    """
    if not positions:
        return 0.0, 0.0
    pnls = [p.realized_pnl for p in positions]
    wins = [p for p in pnls if p > 0]
    best = max(wins) if wins else 0.0
    worst = min(pnls)
    return round(best, 2), round(worst, 2)


def gather_sources(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
    fetchers: Optional[Dict] = None,
) -> Dict[str, List[Dict]]:
    """
    Fetch the four raw datasets for a user concurrently.

    Each source runs in its own worker with its own accumulator. A source
    that fails outright degrades to an empty list; the others still
    return their data.

    Returns:
        Dict with keys subgraph_positions, open_positions,
        closed_positions and activity, each a list of raw dicts.
    """
    fetchers = fetchers or SOURCE_FETCHERS
    results: Dict[str, List[Dict]] = {name: [] for name in fetchers}

    with ThreadPoolExecutor(max_workers=len(fetchers)) as executor:
        futures = {
            executor.submit(
                fetch,
                user_address,
                session=session,
                retry_policy=retry_policy,
                page_delay=page_delay,
                cache=cache,
            ): name
            for name, fetch in fetchers.items()
        }

        for future in as_completed(futures):
            name = futures[future]
            try:
                results[name] = future.result() or []
            except Exception as e:
                logger.error(f"{name} fetch failed for {user_address}: {e}")
                results[name] = []

    return results
