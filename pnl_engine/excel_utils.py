"""
Report writers for reconciliation results.

This module contains Excel formatting constants, cell styling helpers,
the Excel/CSV writers used by update_pnl.py, and progress display
utilities for multi-address runs.
"""

import os
from typing import List

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter

from pnl_engine.models import ReconciliationResult
from pnl_engine.shared_utils import PROFILE_URL, to_iso


# =============================================================================
# Color Constants
# =============================================================================

GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
RED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
YELLOW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)

MONEY_FORMAT = '#,##0.00;[Red]-#,##0.00'


# =============================================================================
# Cell Styling Helpers
# =============================================================================

def apply_pnl_color(cell, value) -> None:
    """
    Apply color fill to cell based on a PNL value.

    Args:
        cell: openpyxl cell object
        value: Profit/loss amount; None means unattributed
    """
    if value is None:
        cell.fill = YELLOW_FILL
    elif value > 0:
        cell.fill = GREEN_FILL
    elif value < 0:
        cell.fill = RED_FILL


def apply_header_style(cell) -> None:
    """
    Apply header styling to cell (blue fill, white bold font).

    Args:
        cell: openpyxl cell object
    """
    cell.fill = HEADER_FILL
    cell.font = HEADER_FONT
    cell.alignment = Alignment(horizontal="center")


def create_hyperlink_cell(cell, url: str, display_text: str = None) -> None:
    """
    Create a clickable hyperlink cell.

    Args:
        cell: openpyxl cell object
        url: URL to link to
        display_text: Optional text to display (defaults to cell value)
    """
    if display_text:
        cell.value = display_text
    cell.hyperlink = url
    cell.font = Font(color="0563C1", underline="single")


def _write_header(ws, headers: List[str]) -> None:
    for col, header in enumerate(headers, start=1):
        apply_header_style(ws.cell(row=1, column=col, value=header))
    ws.freeze_panes = "A2"


def _autosize(ws, min_width: int = 10, max_width: int = 60) -> None:
    for col_cells in ws.columns:
        length = max(len(str(c.value)) if c.value is not None else 0 for c in col_cells)
        letter = get_column_letter(col_cells[0].column)
        ws.column_dimensions[letter].width = max(min_width, min(max_width, length + 2))


# =============================================================================
# Report Writers
# =============================================================================

def summary_rows(results: List[ReconciliationResult]) -> List[dict]:
    """One flat row per reconciled address (headline figures only)."""
    rows = []
    for r in results:
        rows.append({
            "user_address": r.user_address,
            "realized_pnl": r.realized_pnl,
            "unrealized_pnl": r.unrealized_pnl,
            "total_pnl": r.total_pnl,
            "portfolio_value": r.portfolio_value,
            "open_positions": r.open_positions_count,
            "closed_positions": r.closed_positions_count,
            "win_rate": r.trade_stats.win_rate,
            "best_trade": r.best_trade,
            "worst_trade": r.worst_trade,
            "total_volume": r.total_volume,
            "unmatched_sells": r.unmatched_sells,
            "fetch_time": r.fetch_time,
        })
    return rows


def timeline_frame(result: ReconciliationResult) -> pd.DataFrame:
    return pd.DataFrame(
        [{"timestamp": to_iso(p.timestamp), "value": p.value} for p in result.timeline],
        columns=["timestamp", "value"],
    )


def trades_frame(result: ReconciliationResult) -> pd.DataFrame:
    columns = ["id", "timestamp", "market_name", "outcome", "side", "price", "size", "profit"]
    return pd.DataFrame(
        [
            {
                "id": t.id,
                "timestamp": to_iso(t.timestamp),
                "market_name": t.market_name,
                "outcome": t.outcome,
                "side": t.side,
                "price": t.price,
                "size": t.size,
                "profit": t.profit,
            }
            for t in result.enriched_trades
        ],
        columns=columns,
    )


def write_csv_reports(results: List[ReconciliationResult], output_dir: str) -> List[str]:
    """
    Write summary, timeline and trades CSV files.

    Creates:
        - pnl_summary.csv (one row per address)
        - timeline_<address>.csv
        - trades_<address>.csv

    Returns:
        List of file paths written
    """
    os.makedirs(output_dir, exist_ok=True)
    written = []

    summary_path = os.path.join(output_dir, "pnl_summary.csv")
    pd.DataFrame(summary_rows(results)).to_csv(summary_path, index=False)
    written.append(summary_path)

    for result in results:
        address = result.user_address.lower()
        timeline_path = os.path.join(output_dir, f"timeline_{address}.csv")
        trades_path = os.path.join(output_dir, f"trades_{address}.csv")
        timeline_frame(result).to_csv(timeline_path, index=False)
        trades_frame(result).to_csv(trades_path, index=False)
        written.extend([timeline_path, trades_path])

    return written


def write_excel_report(results: List[ReconciliationResult], output_file: str) -> None:
    """
    Generate an Excel workbook for one or more reconciled addresses.

    Sheets:
        - Summary: headline figures, one row per address, linked to the
          Polymarket profile, PNL cells colored green/red
        - Timeline: address, timestamp, cumulative PNL
        - Trades: enriched trades; unattributed SELL profit highlighted yellow
    """
    wb = Workbook()

    ws = wb.active
    ws.title = "Summary"
    rows = summary_rows(results)
    headers = list(rows[0].keys()) if rows else ["user_address"]
    _write_header(ws, headers)
    pnl_columns = {"realized_pnl", "unrealized_pnl", "total_pnl", "best_trade", "worst_trade"}
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, key in enumerate(headers, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=row[key])
            if key == "user_address":
                create_hyperlink_cell(cell, PROFILE_URL.format(address=row[key]))
            elif key in pnl_columns:
                cell.number_format = MONEY_FORMAT
                apply_pnl_color(cell, row[key])
    _autosize(ws)

    ws = wb.create_sheet("Timeline")
    _write_header(ws, ["user_address", "timestamp", "value"])
    row_idx = 2
    for result in results:
        for point in result.timeline:
            ws.cell(row=row_idx, column=1, value=result.user_address)
            ws.cell(row=row_idx, column=2, value=to_iso(point.timestamp))
            value_cell = ws.cell(row=row_idx, column=3, value=point.value)
            value_cell.number_format = MONEY_FORMAT
            row_idx += 1
    _autosize(ws)

    ws = wb.create_sheet("Trades")
    trade_headers = ["user_address", "id", "timestamp", "market_name", "outcome", "side", "price", "size", "profit"]
    _write_header(ws, trade_headers)
    row_idx = 2
    for result in results:
        for trade in result.enriched_trades:
            values = [
                result.user_address, trade.id, to_iso(trade.timestamp), trade.market_name,
                trade.outcome, trade.side, trade.price, trade.size, trade.profit,
            ]
            for col_idx, value in enumerate(values, start=1):
                ws.cell(row=row_idx, column=col_idx, value=value)
            if trade.side == "SELL":
                apply_pnl_color(ws.cell(row=row_idx, column=len(values)), trade.profit)
            row_idx += 1
    _autosize(ws)

    directory = os.path.dirname(output_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    wb.save(output_file)


# =============================================================================
# Progress Display Utilities
# =============================================================================

def progress_bar(current: int, total: int, width: int = 40) -> str:
    """
    Generate a progress bar string.

    Args:
        current: Current progress count
        total: Total items to process
        width: Width of progress bar in characters

    Returns:
        Formatted progress bar string like "[====----] 50/100 (50.0%)"
    """
    if total == 0:
        return f"[{'=' * width}] 0/0"

    pct = current / total
    filled = int(width * pct)
    bar = '=' * filled + '-' * (width - filled)
    return f"[{bar}] {current}/{total} ({pct*100:.1f}%)"


def print_progress(current: int, total: int, prefix: str = "", suffix: str = "") -> None:
    """Print progress bar that updates in place."""
    bar = progress_bar(current, total)
    end_char = '\n' if current >= total else '\r'
    line = f"{prefix}{bar} {suffix}".ljust(80)
    print(line, end=end_char, flush=True)


def format_time(seconds: float) -> str:
    """
    Format seconds into human-readable time.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted string like "1h 23m" or "45 sec"
    """
    if seconds < 60:
        return f"{int(seconds)} sec"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds / 3600)
        minutes = int((seconds % 3600) / 60)
        return f"{hours}h {minutes}m"
