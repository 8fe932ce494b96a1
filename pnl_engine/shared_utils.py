"""
Shared utilities for the Polymarket PnL engine.

This module contains configuration constants, numeric/date coercion
helpers, and display formatting shared across the fetchers, the
reconciliation algorithms, and update_pnl.py.
"""

import math
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dateutil_parser


# =============================================================================
# Configuration
# =============================================================================

# Polymarket Goldsky GraphQL PnL subgraph (settled positions, realized PNL)
PNL_SUBGRAPH_URL = "https://api.goldsky.com/api/public/project_cl6mb8i9h0003e201j6li0diw/subgraphs/pnl-subgraph/0.0.14/gn"

# Polymarket Data API (open positions, closed positions, activity)
DATA_API_URL = "https://data-api.polymarket.com"
POSITIONS_URL = f"{DATA_API_URL}/positions"
CLOSED_POSITIONS_URL = f"{DATA_API_URL}/closed-positions"
ACTIVITY_URL = f"{DATA_API_URL}/activity"

# Public profile page, used for report hyperlinks
PROFILE_URL = "https://polymarket.com/profile/{address}"

# USDC token has 6 decimal places
# Subgraph amounts are in base units (divide by 10^6 to get USDC)
COLLATERAL_SCALE = 1_000_000

# HTTP request timeout (seconds) for a single page request
REQUEST_TIMEOUT = 8

# Retry configuration for transient failures
MAX_RETRIES = 3        # Maximum attempts per page
RETRY_DELAY = 1.0      # Base delay in seconds (linear: RETRY_DELAY * attempt)

# Courtesy delay between successful pages of the same source
PAGE_DELAY = 0.3

# Per-source page sizes and server-side offset caps
SUBGRAPH_PAGE_SIZE = 1000
OPEN_POSITIONS_PAGE_SIZE = 500
CLOSED_POSITIONS_PAGE_SIZE = 50
ACTIVITY_PAGE_SIZE = 500
MAX_OFFSET = 10_000

# Closed-position history is capped, matching the dashboard's chart depth
MAX_CLOSED_POSITIONS = 6000

# Positions below this size are rounding dust, not live positions
OPEN_POSITION_EPSILON = 0.01

# Subgraph positions with |realized PNL| at or below this are dust
REALIZED_PNL_EPSILON = 0.01

# Millisecond timestamps are larger than this; seconds are not
MS_TIMESTAMP_THRESHOLD = 1e12

# Timeline reconciliation windows (seconds)
ANCHOR_WINDOW_SECONDS = 1.0
STALE_POINT_SECONDS = 3600

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


# =============================================================================
# Coercion Helpers
# =============================================================================

def safe_float(value, default: float = 0.0) -> float:
    """
    Coerce an API field to float.

    Stringified decimals, ints and floats are accepted. None, empty
    strings, NaN/inf and anything unparseable return ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a timestamp from any of the shapes the Polymarket APIs return.

    Numeric values (or numeric strings) above MS_TIMESTAMP_THRESHOLD are
    milliseconds, otherwise seconds. Other strings go through dateutil.
    Naive datetimes are assumed to be UTC.

    Returns:
        Timezone-aware UTC datetime, or None if the value cannot be parsed.
    """
    if value is None or isinstance(value, bool) or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    else:
        number = None
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            text = str(value).strip()
            try:
                number = float(text)
            except ValueError:
                try:
                    dt = dateutil_parser.parse(text)
                except (ValueError, OverflowError):
                    return None

        if number is not None:
            if math.isnan(number) or math.isinf(number):
                return None
            if number > MS_TIMESTAMP_THRESHOLD:
                number = number / 1000.0
            try:
                return datetime.fromtimestamp(number, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as ISO-8601 with millisecond precision and Z suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Display Helpers
# =============================================================================

def format_number(value, decimals=2):
    """Format numbers with comma separators (e.g., '1,234.56')"""
    if value is None:
        return ""
    rounded = round(value, decimals)
    return f"{rounded:,.{decimals}f}"


def format_usd(value: float) -> str:
    """Format a dollar amount with sign, e.g. '-$1,234.56'."""
    sign = "-" if value < 0 else ""
    return f"{sign}${format_number(abs(value))}"


def short_address(address: str) -> str:
    """Shorten a wallet address for console output (0x1234...abcd)."""
    if not address or len(address) <= 12:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"
