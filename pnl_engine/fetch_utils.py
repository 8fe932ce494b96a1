"""
Paginated source fetchers for the PnL engine.

Every dataset (subgraph positions, open positions, closed-position
history, activity) is pulled the same way: sequential offset/limit pages,
each page wrapped in a RetryPolicy, a courtesy delay between pages, and
a hard offset cap beyond which the source rejects requests.

Fetchers are fail-soft. Network errors, bad payloads and the offset cap
all end the fetch early and return whatever was accumulated; nothing
raises past fetch_paged.

API Rate Limiting:
    - Data API and Goldsky public endpoints throttle bursts of requests
    - PAGE_DELAY (0.3s) between pages keeps us under the limits
    - Failed pages are retried with linear backoff (RETRY_DELAY * attempt)
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple, Type

import requests

from pnl_engine.cache_utils import TTLCache
from pnl_engine.shared_utils import (
    ACTIVITY_PAGE_SIZE,
    ACTIVITY_URL,
    CLOSED_POSITIONS_PAGE_SIZE,
    CLOSED_POSITIONS_URL,
    MAX_CLOSED_POSITIONS,
    MAX_OFFSET,
    MAX_RETRIES,
    OPEN_POSITIONS_PAGE_SIZE,
    PAGE_DELAY,
    PNL_SUBGRAPH_URL,
    POSITIONS_URL,
    REQUEST_TIMEOUT,
    RETRY_DELAY,
    SUBGRAPH_PAGE_SIZE,
)

logger = logging.getLogger(__name__)

# Shared session for connection pooling
SESSION = requests.Session()

USER_POSITIONS_QUERY = """
query UserPositions($user: String!, $first: Int!, $skip: Int!) {
    userPositions(
        where: { user: $user }
        first: $first
        skip: $skip
        orderBy: realizedPnl
        orderDirection: desc
    ) {
        id
        tokenId
        amount
        avgPrice
        realizedPnl
        totalBought
    }
}
"""


class SourceError(Exception):
    """A page request came back with a payload we cannot use."""


# ------------------------------------------------------------------------------
# Retry Policy
# ------------------------------------------------------------------------------

class RetryPolicy:
    """
    Retry a callable on transient failures with linear backoff.

    Args:
        max_attempts: Total attempts including the first
        base_delay: Seconds; attempt N waits base_delay * N before retrying
        retry_on: Exception types that count as retryable
        sleep: Sleep function (defaults to time.sleep, looked up at call time)
    """

    def __init__(
        self,
        max_attempts: int = MAX_RETRIES,
        base_delay: float = RETRY_DELAY,
        retry_on: Tuple[Type[BaseException], ...] = (requests.exceptions.RequestException, SourceError),
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given (1-based) failed attempt."""
        return self.base_delay * attempt

    def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        (self._sleep or time.sleep)(seconds)

    def call(self, fn: Callable, *args, **kwargs):
        """
        Call ``fn`` until it succeeds or attempts run out.

        Non-retryable exceptions propagate immediately; the last retryable
        exception propagates once all attempts are used.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                wait_time = self.delay_for(attempt)
                logger.warning(
                    f"Request failed ({e}), retrying in {wait_time:.1f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                self.sleep(wait_time)
        raise SourceError("Retry limit exceeded")


# ------------------------------------------------------------------------------
# Pagination
# ------------------------------------------------------------------------------

def effective_page_size(page_number: int, page_size: int, hard_offset_cap: int) -> int:
    """
    Page size to request for a 1-based page number.

    Once page_number * page_size would pass the source's offset cap, the
    size shrinks to floor(cap / page_number) so the fetch keeps going
    deeper with smaller pages instead of failing.
    """
    if page_number * page_size > hard_offset_cap:
        return hard_offset_cap // page_number
    return page_size


def fetch_paged(
    fetch_page: Callable[[int, int], List],
    page_size: int,
    hard_offset_cap: int = MAX_OFFSET,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    max_items: Optional[int] = None,
    label: str = "source",
    failures: Optional[List] = None,
) -> List:
    """
    Accumulate every item of a paginated source.

    Args:
        fetch_page: Callable(offset, limit) -> list performing one request
        page_size: Items per page requested from the source
        hard_offset_cap: Largest offset the source accepts
        retry_policy: Policy wrapped around each page (default RetryPolicy())
        page_delay: Seconds to wait between successful pages
        max_items: Optional ceiling on accumulated items
        label: Name used in log messages
        failures: Optional list; the exception that ended the fetch early
            is appended to it, so callers can tell a degraded result apart

    Returns:
        All items fetched, in page order. Partial if a page failed after
        all retries or the offset cap was reached.

    Stops when:
        - a page is empty or shorter than the size requested
        - the next offset would exceed hard_offset_cap
        - a page fails after all retries
        - max_items is reached
    """
    policy = retry_policy or RetryPolicy()
    items: List = []
    offset = 0
    page_number = 0
    start_time = time.time()

    while True:
        page_number += 1

        if offset > hard_offset_cap:
            logger.warning(
                f"{label}: offset {offset} exceeds cap {hard_offset_cap}, "
                f"stopping with {len(items)} items"
            )
            break

        limit = effective_page_size(page_number, page_size, hard_offset_cap)
        if max_items is not None:
            limit = min(limit, max_items - len(items))
        if limit <= 0:
            break

        try:
            batch = policy.call(fetch_page, offset, limit)
        except Exception as e:
            logger.error(
                f"{label}: page {page_number} (offset={offset}) failed after "
                f"{policy.max_attempts} attempts: {e}; returning {len(items)} items"
            )
            if failures is not None:
                failures.append(e)
            break

        if not batch:
            break

        items.extend(batch)
        offset += len(batch)

        # Fewer results than requested means this was the last page
        if len(batch) < limit:
            break

        policy.sleep(page_delay)

    logger.info(
        f"{label}: fetched {len(items)} items in {page_number} pages "
        f"({time.time() - start_time:.1f}s)"
    )
    return items


# ------------------------------------------------------------------------------
# HTTP Helpers
# ------------------------------------------------------------------------------

def query_subgraph(
    query: str,
    variables: Optional[Dict] = None,
    url: str = PNL_SUBGRAPH_URL,
    session: Optional[requests.Session] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Dict:
    """
    Execute one GraphQL query against a Goldsky subgraph endpoint.

    Returns:
        The 'data' field from the JSON response

    Raises:
        requests.exceptions.RequestException: HTTP/network failure or 429
        SourceError: Response contains 'errors' or has no 'data' key
    """
    payload = {
        "query": query,
        "variables": variables or {}
    }
    response = (session or SESSION).post(url, json=payload, timeout=timeout)
    response.raise_for_status()

    result = response.json()
    if not isinstance(result, dict):
        raise SourceError("Unexpected response format: expected a JSON object")
    if "errors" in result:
        raise SourceError(f"GraphQL query failed: {result['errors']}")
    if "data" not in result or result["data"] is None:
        raise SourceError("Unexpected response format: no 'data' key in response")

    return result["data"]


def get_json_list(
    url: str,
    params: Dict,
    session: Optional[requests.Session] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> List:
    """
    GET a Data API endpoint that returns a JSON list.

    Handles the occasional {"data": [...]} wrapper; any other non-list
    payload counts as an empty page. An {"error": ...} body raises
    SourceError so the retry policy sees it.
    """
    response = (session or SESSION).get(url, params=params, timeout=timeout)
    response.raise_for_status()
    data = response.json()

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if data.get("error"):
            raise SourceError(f"API error from {url}: {data['error']}")
        batch = data.get("data", [])
        return batch if isinstance(batch, list) else []
    return []


def _cached(cache: Optional[TTLCache], key: Tuple, compute: Callable[[List], List]) -> List:
    """
    Return ``compute(failures)`` through the cache.

    A fetch that ended on a failed page is returned but not stored, so the
    next call within the TTL retries the source.
    """
    if cache is None:
        return compute([])

    sentinel = object()
    value = cache.get(key, sentinel)
    if value is not sentinel:
        return value

    failures: List = []
    value = compute(failures)
    if failures:
        logger.warning(f"{key[0]} for {key[1]} is incomplete, not caching")
    else:
        cache.set(key, value)
    return value


# ------------------------------------------------------------------------------
# Source Fetchers
# ------------------------------------------------------------------------------

def fetch_subgraph_positions(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
) -> List[Dict]:
    """
    Fetch every PnL-subgraph position for a user (realized PNL source).

    Items carry tokenId, realizedPnl (fixed-point string), avgPrice,
    totalBought and amount. There is no timestamp field; settlement
    timing comes from the closed-positions history instead.
    """
    user = user_address.lower()

    def fetch_page(offset: int, limit: int) -> List:
        variables = {"user": user, "first": limit, "skip": offset}
        data = query_subgraph(USER_POSITIONS_QUERY, variables, session=session)
        return data.get("userPositions") or []

    return _cached(cache, ("subgraph_positions", user), lambda failures: fetch_paged(
        fetch_page,
        page_size=SUBGRAPH_PAGE_SIZE,
        hard_offset_cap=MAX_OFFSET,
        retry_policy=retry_policy,
        page_delay=page_delay,
        label="subgraph positions",
        failures=failures,
    ))


def _data_api_fetcher(
    url: str,
    user_address: str,
    session: Optional[requests.Session],
    extra_params: Optional[Dict] = None,
) -> Callable[[int, int], List]:
    def fetch_page(offset: int, limit: int) -> List:
        params = {"user": user_address, "limit": limit, "offset": offset}
        if extra_params:
            params.update(extra_params)
        return get_json_list(url, params, session=session)
    return fetch_page


def fetch_open_positions(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
) -> List[Dict]:
    """Fetch the user's current positions (size, initialValue, currentValue, cashPnl)."""
    user = user_address.lower()
    return _cached(cache, ("open_positions", user), lambda failures: fetch_paged(
        _data_api_fetcher(POSITIONS_URL, user, session),
        page_size=OPEN_POSITIONS_PAGE_SIZE,
        hard_offset_cap=MAX_OFFSET,
        retry_policy=retry_policy,
        page_delay=page_delay,
        label="open positions",
        failures=failures,
    ))


def fetch_closed_positions(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
    sort_by: Optional[str] = None,
    sort_direction: Optional[str] = None,
    max_items: int = MAX_CLOSED_POSITIONS,
) -> List[Dict]:
    """
    Fetch the closed-position history (realizedPnl, endDate, title).

    Args:
        sort_by: Optional server-side sort field (e.g. "REALIZEDPNL")
        sort_direction: Optional "ASC" or "DESC"
        max_items: Stop after this many positions
    """
    user = user_address.lower()
    extra_params = {}
    if sort_by:
        extra_params["sortBy"] = sort_by
    if sort_direction:
        extra_params["sortDirection"] = sort_direction

    cache_key = ("closed_positions", user, sort_by, sort_direction, max_items)
    return _cached(cache, cache_key, lambda failures: fetch_paged(
        _data_api_fetcher(CLOSED_POSITIONS_URL, user, session, extra_params),
        page_size=CLOSED_POSITIONS_PAGE_SIZE,
        hard_offset_cap=MAX_OFFSET,
        retry_policy=retry_policy,
        page_delay=page_delay,
        max_items=max_items,
        label="closed positions",
        failures=failures,
    ))


def fetch_activity(
    user_address: str,
    session: Optional[requests.Session] = None,
    retry_policy: Optional[RetryPolicy] = None,
    page_delay: float = PAGE_DELAY,
    cache: Optional[TTLCache] = None,
) -> List[Dict]:
    """Fetch the full activity feed (TRADE, REDEEM, deposits, rewards, ...)."""
    user = user_address.lower()
    return _cached(cache, ("activity", user), lambda failures: fetch_paged(
        _data_api_fetcher(ACTIVITY_URL, user, session),
        page_size=ACTIVITY_PAGE_SIZE,
        hard_offset_cap=MAX_OFFSET,
        retry_policy=retry_policy,
        page_delay=page_delay,
        label="activity",
        failures=failures,
    ))
