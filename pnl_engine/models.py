"""
Typed records for the PnL engine.

Raw API payloads are mapped onto these by normalize_utils; the
reconciliation algorithms only ever see these types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from pnl_engine.shared_utils import EPOCH, OPEN_POSITION_EPSILON, to_iso


@dataclass
class Trade:
    """A single BUY or SELL fill in one market outcome."""
    id: Optional[str]
    market_name: str
    outcome: str
    side: str
    price: float
    size: float
    timestamp: datetime = EPOCH
    profit: Optional[float] = None

    @property
    def market_key(self) -> str:
        # Market name + outcome, not the raw market id
        return f"{self.market_name}_{self.outcome}"

    def to_dict(self) -> Dict:
        data = {
            "id": self.id,
            "marketName": self.market_name,
            "outcome": self.outcome,
            "type": self.side,
            "price": self.price,
            "size": self.size,
            "timestamp": to_iso(self.timestamp),
        }
        if self.profit is not None:
            data["profit"] = self.profit
        return data


@dataclass
class SubgraphPosition:
    """A user position from the PnL subgraph. Amounts are raw fixed-point."""
    token_id: str
    realized_pnl: float
    avg_price: float = 0.0
    total_bought: float = 0.0
    amount: float = 0.0


@dataclass
class ClosedPosition:
    """A settled position from the closed-positions history."""
    realized_pnl: float
    end_date: Optional[datetime]
    title: str
    initial_value: float = 0.0
    current_value: float = 0.0
    outcome: str = "YES"


@dataclass
class OpenPosition:
    """A live position; cash_pnl is the source-computed unrealized PNL."""
    size: float
    initial_value: float
    current_value: float
    cash_pnl: float
    title: str = ""
    outcome: str = "YES"

    @property
    def is_open(self) -> bool:
        return self.size > OPEN_POSITION_EPSILON


@dataclass
class ActivityEvent:
    """
    One row of the activity feed.

    Only TRADE and REDEEM matter for reconciliation. ``amount`` is the
    signed USDC delta for REDEEM; the trade fields are populated for
    TRADE rows so they can be turned into Trade records.
    """
    type: str
    timestamp: Optional[datetime]
    amount: float = 0.0
    side: str = ""
    price: float = 0.0
    size: float = 0.0
    usdc_size: float = 0.0
    title: str = ""
    outcome: str = "YES"
    transaction_hash: Optional[str] = None


@dataclass
class PnLPoint:
    timestamp: datetime
    value: float

    def to_dict(self) -> Dict:
        return {"timestamp": to_iso(self.timestamp), "value": self.value}


@dataclass
class TradeStats:
    """Win/loss statistics over FIFO-attributed SELL profits."""
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    win_streak: int = 0

    def to_dict(self) -> Dict:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "winRate": self.win_rate,
            "bestTrade": self.best_trade,
            "worstTrade": self.worst_trade,
            "winStreak": self.win_streak,
        }


@dataclass
class PnLSummary:
    """Headline figures produced by the aggregator."""
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    portfolio_value: float = 0.0
    open_positions_count: int = 0
    closed_positions_count: int = 0


@dataclass
class ReconciliationResult:
    user_address: str
    realized_pnl: float
    unrealized_pnl: float
    total_pnl: float
    portfolio_value: float
    open_positions_count: int
    closed_positions_count: int
    timeline: List[PnLPoint] = field(default_factory=list)
    enriched_trades: List[Trade] = field(default_factory=list)
    trade_stats: TradeStats = field(default_factory=TradeStats)
    best_trade: float = 0.0
    worst_trade: float = 0.0
    total_volume: float = 0.0
    unmatched_sells: int = 0
    fetch_time: float = 0.0

    def to_dict(self) -> Dict:
        """Consumer-facing JSON object (camelCase keys, ISO timestamps)."""
        return {
            "userAddress": self.user_address,
            "realizedPnl": self.realized_pnl,
            "unrealizedPnl": self.unrealized_pnl,
            "totalPnl": self.total_pnl,
            "portfolioValue": self.portfolio_value,
            "openPositionsCount": self.open_positions_count,
            "closedPositionsCount": self.closed_positions_count,
            "timeline": [point.to_dict() for point in self.timeline],
            "enrichedTrades": [trade.to_dict() for trade in self.enriched_trades],
            "tradeStats": self.trade_stats.to_dict(),
            "bestTrade": self.best_trade,
            "worstTrade": self.worst_trade,
            "totalVolume": self.total_volume,
            "unmatchedSells": self.unmatched_sells,
            "fetchTime": self.fetch_time,
        }
