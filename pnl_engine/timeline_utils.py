"""
Cumulative PnL timeline synthesis.

Closed positions are settled, audited data, so each one becomes an
"anchor" point carrying the running realized total. REDEEM and TRADE
activity fills in between the anchors. Anchors always win over activity
that lands within a second of them, the series is deduplicated to one
point per second, and the last point is pinned to the authoritative
total from the aggregator.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from pnl_engine.models import ActivityEvent, ClosedPosition, PnLPoint
from pnl_engine.shared_utils import ANCHOR_WINDOW_SECONDS, STALE_POINT_SECONDS, utc_now

ANCHOR_PRIORITY = 1
EVENT_PRIORITY = 2

# Activity types that mark realized PNL on the chart
TIMELINE_EVENT_TYPES = {"REDEEM", "TRADE"}


def build_anchors(closed_positions: List[ClosedPosition]) -> List[PnLPoint]:
    """Running realized total at each closed position's end date, oldest first."""
    dated = [p for p in closed_positions if p.end_date is not None]
    dated.sort(key=lambda p: p.end_date)

    anchors = []
    running = 0.0
    for position in dated:
        running += position.realized_pnl
        anchors.append(PnLPoint(timestamp=position.end_date, value=running))
    return anchors


def _near_anchor(timestamp: datetime, anchors: List[PnLPoint]) -> bool:
    return any(
        abs((timestamp - anchor.timestamp).total_seconds()) <= ANCHOR_WINDOW_SECONDS
        for anchor in anchors
    )


def _anchor_value_at(timestamp: datetime, anchors: List[PnLPoint]) -> float:
    """Value of the last anchor at or before ``timestamp`` (0 before the first)."""
    value = 0.0
    for anchor in anchors:
        if anchor.timestamp > timestamp:
            break
        value = anchor.value
    return value


def _second_key(timestamp: datetime) -> int:
    return int(timestamp.timestamp() // 1)


def build_timeline(
    activity_events: List[ActivityEvent],
    closed_positions: List[ClosedPosition],
    authoritative_total: float,
    now: Optional[datetime] = None,
) -> List[PnLPoint]:
    """
    Merge anchors and activity into one chart-ready cumulative PnL series.

    Args:
        activity_events: Normalized activity feed (any order, any types)
        closed_positions: Normalized closed-position history
        authoritative_total: Total PNL from the aggregator
        now: Current time (defaults to utc_now())

    Returns:
        Points sorted ascending by timestamp, at most one per second,
        whose last value is authoritative_total as passed in. Intermediate
        points are rounded to cents; the total is not rounded again.
    """
    now = now or utc_now()
    total = authoritative_total

    anchors = build_anchors(closed_positions)

    # (timestamp, value, priority)
    combined = [(a.timestamp, a.value, ANCHOR_PRIORITY) for a in anchors]

    for event in activity_events:
        if event.type not in TIMELINE_EVENT_TYPES or event.timestamp is None:
            continue
        # The anchor records the same settlement more accurately
        if _near_anchor(event.timestamp, anchors):
            continue
        delta = event.amount if event.type == "REDEEM" else 0.0
        value = _anchor_value_at(event.timestamp, anchors) + delta
        combined.append((event.timestamp, value, EVENT_PRIORITY))

    combined.sort(key=lambda item: (_second_key(item[0]), item[2], item[0]))

    timeline: List[PnLPoint] = []
    seen_seconds = set()
    for timestamp, value, _priority in combined:
        key = _second_key(timestamp)
        if key in seen_seconds:
            continue
        seen_seconds.add(key)
        timeline.append(PnLPoint(timestamp=timestamp, value=round(value, 2)))

    if not timeline:
        return [
            PnLPoint(timestamp=now - timedelta(days=1), value=0.0),
            PnLPoint(timestamp=now, value=total),
        ]

    last = timeline[-1]
    if (now - last.timestamp).total_seconds() > STALE_POINT_SECONDS:
        timeline.append(PnLPoint(timestamp=now, value=total))
    else:
        # Recent last point takes the total in place of a near-duplicate point
        last.value = total

    timeline.sort(key=lambda point: point.timestamp)
    return timeline
