"""Tests for pnl_engine/excel_utils.py and display helpers"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timezone

import pandas as pd
from openpyxl import load_workbook

from pnl_engine.excel_utils import (
    GREEN_FILL,
    RED_FILL,
    YELLOW_FILL,
    format_time,
    progress_bar,
    write_csv_reports,
    write_excel_report,
)
from pnl_engine.models import PnLPoint, ReconciliationResult, Trade
from pnl_engine.shared_utils import format_number, format_usd, short_address

T1 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2025, 1, 2, tzinfo=timezone.utc)
ADDRESS = "0xAbC0000000000000000000000000000000000001"


def make_result():
    return ReconciliationResult(
        user_address=ADDRESS,
        realized_pnl=100.0,
        unrealized_pnl=-5.0,
        total_pnl=95.0,
        portfolio_value=40.0,
        open_positions_count=1,
        closed_positions_count=3,
        timeline=[PnLPoint(T1, 100.0), PnLPoint(T2, 95.0)],
        enriched_trades=[
            Trade(id="a", market_name="M", outcome="YES", side="BUY", price=0.4, size=10, timestamp=T1),
            Trade(id="b", market_name="M", outcome="YES", side="SELL", price=0.6, size=5, timestamp=T2, profit=1.0),
            Trade(id="c", market_name="N", outcome="NO", side="SELL", price=0.2, size=5, timestamp=T2),
        ],
    )


class TestCsvReports:
    def test_files_written(self, tmp_path):
        written = write_csv_reports([make_result()], str(tmp_path / "reports"))
        names = sorted(os.path.basename(p) for p in written)
        address = ADDRESS.lower()
        assert names == sorted(["pnl_summary.csv", f"timeline_{address}.csv", f"trades_{address}.csv"])

        summary = pd.read_csv(tmp_path / "reports" / "pnl_summary.csv")
        assert summary.loc[0, "total_pnl"] == 95.0
        assert summary.loc[0, "closed_positions"] == 3

        timeline = pd.read_csv(tmp_path / "reports" / f"timeline_{address}.csv")
        assert list(timeline["value"]) == [100.0, 95.0]
        assert timeline.loc[0, "timestamp"] == "2025-01-01T00:00:00.000Z"

        trades = pd.read_csv(tmp_path / "reports" / f"trades_{address}.csv")
        assert list(trades["id"]) == ["a", "b", "c"]
        assert trades["profit"].isna().tolist() == [True, False, True]


class TestExcelReport:
    def test_sheets_and_colors(self, tmp_path):
        output = tmp_path / "out" / "pnl.xlsx"
        write_excel_report([make_result()], str(output))

        wb = load_workbook(output)
        assert wb.sheetnames == ["Summary", "Timeline", "Trades"]

        summary = wb["Summary"]
        headers = [c.value for c in summary[1]]
        assert summary.cell(row=2, column=headers.index("user_address") + 1).hyperlink is not None
        realized = summary.cell(row=2, column=headers.index("realized_pnl") + 1)
        unrealized = summary.cell(row=2, column=headers.index("unrealized_pnl") + 1)
        assert realized.fill.start_color.rgb == GREEN_FILL.start_color.rgb
        assert unrealized.fill.start_color.rgb == RED_FILL.start_color.rgb

        assert wb["Timeline"].max_row == 3

        trades = wb["Trades"]
        assert trades.max_row == 4
        # Unattributed SELL is highlighted
        assert trades.cell(row=4, column=9).fill.start_color.rgb == YELLOW_FILL.start_color.rgb


class TestFormatting:
    def test_format_number(self):
        assert format_number(1234.567) == "1,234.57"
        assert format_number(None) == ""
        assert format_number(5, decimals=0) == "5"

    def test_format_usd(self):
        assert format_usd(-1234.5) == "-$1,234.50"
        assert format_usd(0) == "$0.00"

    def test_short_address(self):
        assert short_address(ADDRESS) == "0xAbC0...0001"
        assert short_address("0xabc") == "0xabc"

    def test_progress_and_time(self):
        assert progress_bar(5, 10, width=10) == "[=====-----] 5/10 (50.0%)"
        assert progress_bar(0, 0, width=4) == "[====] 0/0"
        assert format_time(45) == "45 sec"
        assert format_time(125) == "2m 5s"
        assert format_time(3900) == "1h 5m"
