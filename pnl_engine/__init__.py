"""Reconciliation engine for Polymarket trading PnL."""

from pnl_engine.cache_utils import TTLCache
from pnl_engine.fetch_utils import (
    RetryPolicy,
    SourceError,
    fetch_paged,
    fetch_subgraph_positions,
    fetch_open_positions,
    fetch_closed_positions,
    fetch_activity,
)
from pnl_engine.fifo_utils import (
    attribute_realized_pnl,
    ensure_trade_ids,
    summarize_trade_profits,
)
from pnl_engine.models import (
    ActivityEvent,
    ClosedPosition,
    OpenPosition,
    PnLPoint,
    PnLSummary,
    ReconciliationResult,
    SubgraphPosition,
    Trade,
    TradeStats,
)
from pnl_engine.pnl_utils import aggregate_pnl, gather_sources
from pnl_engine.timeline_utils import build_timeline

__all__ = [
    # cache_utils
    "TTLCache",
    # fetch_utils
    "RetryPolicy",
    "SourceError",
    "fetch_paged",
    "fetch_subgraph_positions",
    "fetch_open_positions",
    "fetch_closed_positions",
    "fetch_activity",
    # fifo_utils
    "attribute_realized_pnl",
    "ensure_trade_ids",
    "summarize_trade_profits",
    # models
    "ActivityEvent",
    "ClosedPosition",
    "OpenPosition",
    "PnLPoint",
    "PnLSummary",
    "ReconciliationResult",
    "SubgraphPosition",
    "Trade",
    "TradeStats",
    # pnl_utils
    "aggregate_pnl",
    "gather_sources",
    # timeline_utils
    "build_timeline",
]
