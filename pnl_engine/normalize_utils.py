"""
Source adapters for the PnL engine.

The Polymarket APIs are loosely typed: the same concept shows up under
different field names depending on endpoint and API version, and numbers
arrive as strings, floats or nothing at all. Each function here maps one
raw record onto a typed model from pnl_engine.models so the reconciliation
code never has to guess field names.

Malformed fields never raise. Numerics default to 0, dates to None, and
processing continues with the next record.
"""

from typing import Dict, Iterable, List, Optional

from pnl_engine.models import (
    ActivityEvent,
    ClosedPosition,
    OpenPosition,
    SubgraphPosition,
    Trade,
)
from pnl_engine.shared_utils import EPOCH, parse_timestamp, safe_float


def first_present(record: Dict, *keys, default=None):
    """Return the first value in ``record`` under any of ``keys`` that is not None/empty."""
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return default


def normalize_outcome(value) -> str:
    """Outcome label, defaulting to YES when the source omits it."""
    if value is None:
        return "YES"
    text = str(value).strip()
    return text if text else "YES"


def normalize_side(value) -> str:
    """Map buy/BUY/Buy to BUY; everything else is a SELL."""
    return "BUY" if str(value or "").strip().upper() == "BUY" else "SELL"


def market_title(record: Dict) -> str:
    """Market display name; the ``market`` field is sometimes a nested object."""
    market = record.get("market")
    if isinstance(market, dict):
        nested = first_present(market, "question", "title")
        if nested:
            return str(nested)
        market = None
    title = first_present(record, "title", "marketName")
    if title is None:
        title = market
    return str(title) if title else "Unknown Market"


# =============================================================================
# Per-source adapters
# =============================================================================

def normalize_subgraph_position(raw: Dict) -> SubgraphPosition:
    return SubgraphPosition(
        token_id=str(raw.get("tokenId") or ""),
        realized_pnl=safe_float(raw.get("realizedPnl")),
        avg_price=safe_float(raw.get("avgPrice")),
        total_bought=safe_float(raw.get("totalBought")),
        amount=safe_float(raw.get("amount")),
    )


def normalize_open_position(raw: Dict) -> OpenPosition:
    return OpenPosition(
        size=safe_float(raw.get("size")),
        initial_value=safe_float(raw.get("initialValue")),
        current_value=safe_float(first_present(raw, "currentValue", "totalValue")),
        cash_pnl=safe_float(first_present(raw, "cashPnl", "pnl")),
        title=market_title(raw),
        outcome=normalize_outcome(raw.get("outcome")),
    )


def normalize_closed_position(raw: Dict) -> ClosedPosition:
    return ClosedPosition(
        realized_pnl=safe_float(first_present(raw, "realizedPnl", "realized_pnl")),
        end_date=parse_timestamp(raw.get("endDate")),
        title=market_title(raw),
        initial_value=safe_float(raw.get("initialValue")),
        current_value=safe_float(first_present(raw, "currentValue", "totalValue")),
        outcome=normalize_outcome(raw.get("outcome")),
    )


def normalize_activity_event(raw: Dict) -> ActivityEvent:
    return ActivityEvent(
        type=str(raw.get("type") or "").strip().upper(),
        timestamp=parse_timestamp(raw.get("timestamp")),
        amount=safe_float(first_present(raw, "amount", "usdcSize")),
        side=str(raw.get("side") or "").strip().upper(),
        price=safe_float(first_present(raw, "price", "outcomeTokenPrice")),
        size=safe_float(first_present(raw, "size", "outcomeTokenAmount")),
        usdc_size=safe_float(raw.get("usdcSize")),
        title=market_title(raw),
        outcome=normalize_outcome(raw.get("outcome")),
        transaction_hash=first_present(raw, "transactionHash", "id"),
    )


def normalize_trade(raw: Dict) -> Trade:
    """
    Map a raw trade record (from /trades or an activity TRADE row) to a Trade.

    The id is left as None when the source has none; fifo_utils
    synthesizes a deterministic one.
    """
    trade_id = first_present(raw, "transactionHash", "id")
    return Trade(
        id=str(trade_id) if trade_id is not None else None,
        market_name=market_title(raw),
        outcome=normalize_outcome(raw.get("outcome")),
        side=normalize_side(first_present(raw, "side", "type")),
        price=max(0.0, safe_float(first_present(raw, "price", "outcomeTokenPrice"))),
        size=max(0.0, safe_float(first_present(raw, "size", "outcomeTokenAmount", "amount"))),
        timestamp=parse_timestamp(raw.get("timestamp")) or EPOCH,
    )


def trade_from_activity(event: ActivityEvent) -> Optional[Trade]:
    """Build a Trade from a TRADE activity event; other event types return None."""
    if event.type != "TRADE":
        return None
    return Trade(
        id=event.transaction_hash,
        market_name=event.title or "Unknown Market",
        outcome=event.outcome,
        side=normalize_side(event.side),
        price=max(0.0, event.price),
        size=max(0.0, event.size),
        timestamp=event.timestamp or EPOCH,
    )


# =============================================================================
# Batch helpers
# =============================================================================

def _only_dicts(records: Iterable) -> List[Dict]:
    return [r for r in (records or []) if isinstance(r, dict)]


def normalize_subgraph_positions(records: Iterable) -> List[SubgraphPosition]:
    return [normalize_subgraph_position(r) for r in _only_dicts(records)]


def normalize_open_positions(records: Iterable) -> List[OpenPosition]:
    return [normalize_open_position(r) for r in _only_dicts(records)]


def normalize_closed_positions(records: Iterable) -> List[ClosedPosition]:
    return [normalize_closed_position(r) for r in _only_dicts(records)]


def normalize_activity(records: Iterable) -> List[ActivityEvent]:
    return [normalize_activity_event(r) for r in _only_dicts(records)]


def trades_from_activity(events: Iterable[ActivityEvent]) -> List[Trade]:
    """All TRADE events as Trade records, in feed order."""
    trades = []
    for event in events:
        trade = trade_from_activity(event)
        if trade is not None:
            trades.append(trade)
    return trades
