"""
Polymarket PnL Reconciler
=========================

Reconciles a wallet's realized, unrealized and total PNL from Polymarket's
inconsistent public data sources and builds a chart-ready PNL timeline.

Data Sources:
    - PNL Subgraph: Every settled position with fixed-point realized PNL
    - Data API /positions: Open positions with source-computed cashPnl
    - Data API /closed-positions: Settled positions with end dates
    - Data API /activity: TRADE / REDEEM / other events

Output (per address):
    - realized_pnl / unrealized_pnl / total_pnl / portfolio_value
    - open and closed position counts
    - timeline: cumulative PNL points, last point pinned to total_pnl
    - enriched trades: SELL trades carry cost-basis realized profit
    - trade stats: win rate, best/worst trade, win streak

Usage:
    python update_pnl.py 0x123...abc                      # Print summary
    python update_pnl.py 0xabc 0xdef --output-json out.json
    python update_pnl.py --addresses-file wallets.csv --excel pnl.xlsx
    python update_pnl.py 0xabc --csv-dir reports/ --verbose

Architecture:
    1. Fetch the four sources concurrently (pagination + retry per source)
    2. Normalize raw records into typed models
    3. Aggregate headline PNL (subgraph realized + open-position unrealized)
    4. Attribute per-trade profit from activity TRADE rows
    5. Build the timeline from closed-position anchors and activity
"""

import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
import requests

from pnl_engine.cache_utils import TTLCache
from pnl_engine.excel_utils import (
    format_time,
    print_progress,
    write_csv_reports,
    write_excel_report,
)
from pnl_engine.fetch_utils import RetryPolicy
from pnl_engine.fifo_utils import (
    attribute_realized_pnl,
    count_unmatched_sells,
    summarize_trade_profits,
    total_volume,
)
from pnl_engine.models import ReconciliationResult
from pnl_engine.normalize_utils import (
    normalize_activity,
    normalize_closed_positions,
    normalize_open_positions,
    normalize_subgraph_positions,
    trades_from_activity,
)
from pnl_engine.pnl_utils import aggregate_pnl, best_and_worst_closed, gather_sources
from pnl_engine.shared_utils import (
    MAX_RETRIES,
    PAGE_DELAY,
    RETRY_DELAY,
    format_usd,
    short_address,
)
from pnl_engine.timeline_utils import build_timeline

# ------------------------------------------------------------------------------
# Logging Configuration
# ------------------------------------------------------------------------------

def setup_logging():
    """Configure logging to file for this script and the pnl_engine package."""
    os.makedirs("logs", exist_ok=True)

    log_logger = logging.getLogger(__name__)
    log_logger.setLevel(logging.INFO)
    engine_logger = logging.getLogger("pnl_engine")
    engine_logger.setLevel(logging.INFO)

    # Prevent duplicate handlers on reimport
    if not log_logger.handlers:
        file_handler = logging.FileHandler("logs/pnl.log", encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_format = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(file_format)
        log_logger.addHandler(file_handler)
        engine_logger.addHandler(file_handler)

    return log_logger

logger = setup_logging()

# Cache lifetime for raw source data when reconciling many addresses
CACHE_TTL_SECONDS = 300


# ------------------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------------------

def reconcile_from_raw(
    user_address: str,
    raw: Dict[str, List[Dict]],
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """
    Build a ReconciliationResult from already-fetched raw source data.

    Args:
        user_address: Wallet address the data belongs to
        raw: Dict with subgraph_positions, open_positions, closed_positions
             and activity lists (missing keys count as empty)
        now: Current time for timeline reconciliation (defaults to UTC now)

    Returns:
        Fully populated ReconciliationResult. Never raises on bad records.
    """
    subgraph_positions = normalize_subgraph_positions(raw.get("subgraph_positions", []))
    open_positions = normalize_open_positions(raw.get("open_positions", []))
    closed_positions = normalize_closed_positions(raw.get("closed_positions", []))
    activity = normalize_activity(raw.get("activity", []))

    summary = aggregate_pnl(subgraph_positions, open_positions)

    enriched_trades = attribute_realized_pnl(trades_from_activity(activity))
    timeline = build_timeline(activity, closed_positions, summary.total_pnl, now=now)
    best_trade, worst_trade = best_and_worst_closed(closed_positions)

    return ReconciliationResult(
        user_address=user_address,
        realized_pnl=summary.realized_pnl,
        unrealized_pnl=summary.unrealized_pnl,
        total_pnl=summary.total_pnl,
        portfolio_value=summary.portfolio_value,
        open_positions_count=summary.open_positions_count,
        closed_positions_count=summary.closed_positions_count,
        timeline=timeline,
        enriched_trades=enriched_trades,
        trade_stats=summarize_trade_profits(enriched_trades),
        best_trade=best_trade,
        worst_trade=worst_trade,
        total_volume=total_volume(enriched_trades),
        unmatched_sells=count_unmatched_sells(enriched_trades),
    )


def reconcile_user(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """
    Fetch all sources for a wallet and reconcile them.

    Source failures degrade to empty datasets; the worst case is a result
    with zero PNL and a two-point timeline.
    """
    start_time = time.time()
    logger.info(f"Reconciling {user_address}")

    raw = gather_sources(
        user_address,
        session=session,
        retry_policy=retry_policy,
        page_delay=page_delay,
        cache=cache,
    )
    result = reconcile_from_raw(user_address, raw, now=now)
    result.fetch_time = round(time.time() - start_time, 1)

    logger.info(
        f"{user_address}: realized={result.realized_pnl:.2f} "
        f"unrealized={result.unrealized_pnl:.2f} total={result.total_pnl:.2f} "
        f"open={result.open_positions_count} closed={result.closed_positions_count} "
        f"timeline={len(result.timeline)} trades={len(result.enriched_trades)} "
        f"unmatched_sells={result.unmatched_sells} ({result.fetch_time}s)"
    )
    return result


def print_summary(result: ReconciliationResult) -> None:
    """Print a compact console summary for one address."""
    print(f"\n{short_address(result.user_address)}")
    print(f"  Realized PnL:    {format_usd(result.realized_pnl)} ({result.closed_positions_count} closed)")
    print(f"  Unrealized PnL:  {format_usd(result.unrealized_pnl)} ({result.open_positions_count} open)")
    print(f"  Total PnL:       {format_usd(result.total_pnl)}")
    print(f"  Portfolio Value: {format_usd(result.portfolio_value)}")
    stats = result.trade_stats
    print(f"  Trades:          {len(result.enriched_trades)} | Win rate {stats.win_rate:.1f}% | Streak {stats.win_streak}")
    print(f"  Best/Worst:      {format_usd(result.best_trade)} / {format_usd(result.worst_trade)}")
    print(f"  Timeline:        {len(result.timeline)} points")
    if result.unmatched_sells:
        print(f"  Warning: {result.unmatched_sells} SELL trades had no matching BUY history")


# ------------------------------------------------------------------------------
# Input Helpers
# ------------------------------------------------------------------------------

def load_addresses(addresses: List[str], addresses_file: Optional[str] = None) -> List[str]:
    """
    Combine CLI addresses with addresses from a CSV file.

    The file needs a 'user_address' column (one wallet per row). Duplicates
    are removed case-insensitively, preserving first-seen order.
    """
    combined = list(addresses or [])
    if addresses_file:
        df = pd.read_csv(addresses_file)
        if "user_address" not in df.columns:
            raise ValueError(f"Missing required column 'user_address' in {addresses_file}")
        combined.extend(df["user_address"].dropna().astype(str).str.strip().tolist())

    seen = set()
    unique = []
    for address in combined:
        key = address.lower()
        if address and key not in seen:
            seen.add(key)
            unique.append(address)
    return unique


def process_addresses(
    addresses: List[str],
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    verbose: bool = False,
) -> List[ReconciliationResult]:
    """
    Reconcile each address in turn, continuing past per-address failures.

    A single TTLCache is shared across the run so repeated addresses do not
    refetch their sources.
    """
    cache = TTLCache(ttl_seconds=CACHE_TTL_SECONDS)
    results = []
    failed = 0
    start_time = time.time()
    total = len(addresses)

    for idx, address in enumerate(addresses, 1):
        try:
            result = reconcile_user(
                address,
                retry_policy=retry_policy,
                page_delay=page_delay,
                cache=cache,
            )
            results.append(result)
            if verbose:
                print_summary(result)
        except Exception as e:
            failed += 1
            logger.error(f"Failed to reconcile {address}: {e}")
            print(f"  Error: {short_address(address)}: {e}")

        if not verbose and total > 1:
            print_progress(idx, total, prefix="Reconciling ", suffix=format_time(time.time() - start_time))

    status = f"[OK] {len(results):,} addresses | {format_time(time.time() - start_time)}"
    if failed > 0:
        status += f" | {failed} failed"
    print(status)
    return results


# ------------------------------------------------------------------------------
# Main Entry Point
# ------------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile Polymarket wallet PnL")
    parser.add_argument("addresses", nargs="*", help="Wallet addresses to reconcile")
    parser.add_argument("--addresses-file", type=str, help="CSV file with a user_address column")
    parser.add_argument("--output-json", type=str, help="Write results as JSON to this file")
    parser.add_argument("--csv-dir", type=str, help="Write summary/timeline/trades CSVs to this directory")
    parser.add_argument("--excel", type=str, help="Write an Excel report to this file")
    parser.add_argument("--page-delay", type=float, default=PAGE_DELAY, help="Seconds between pages")
    parser.add_argument("--retry-delay", type=float, default=RETRY_DELAY, help="Base retry backoff in seconds")
    parser.add_argument("--max-retries", type=int, default=MAX_RETRIES, help="Attempts per page")
    parser.add_argument("--verbose", action="store_true", help="Print a summary per address")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        addresses = load_addresses(args.addresses, args.addresses_file)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        logger.error(f"Could not load addresses: {e}")
        return 1

    if not addresses:
        parser.print_usage()
        print("Error: provide at least one address or --addresses-file")
        return 1

    retry_policy = RetryPolicy(max_attempts=args.max_retries, base_delay=args.retry_delay)
    verbose = args.verbose or len(addresses) == 1
    results = process_addresses(addresses, retry_policy=retry_policy, page_delay=args.page_delay, verbose=verbose)

    if args.output_json:
        with open(args.output_json, "w", encoding="utf-8") as f:
            json.dump([r.to_dict() for r in results], f, indent=2)
        print(f"Saved JSON to {args.output_json}")

    if args.csv_dir:
        written = write_csv_reports(results, args.csv_dir)
        print(f"Saved {len(written)} CSV files to {args.csv_dir}")

    if args.excel:
        write_excel_report(results, args.excel)
        print(f"Saved Excel report to {args.excel}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
