"""
Market Data Feeds

StaticMarketFeed  - serves a fixed (replaceable) snapshot list; used for
                    replays, demos and tests
GammaMarketFeed   - active markets from the Polymarket Gamma REST API,
                    ordered by 24h volume, token-bucket throttled and retried
                    with exponential backoff

A record that cannot be turned into a usable snapshot is skipped and counted;
it never fails the whole fetch.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from config.constants import (
    API_TIMEOUT_SEC,
    GAMMA_API_URL,
    GAMMA_READ_BURST,
    GAMMA_READ_RATE_PER_SEC,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
)
from core.models import MarketSnapshot
from utils.exceptions import (
    APIError,
    APITimeoutError,
    DataValidationError,
    InvalidResponseError,
    RateLimitError,
)
from utils.helpers import async_retry_with_backoff, validate_liquidity, validate_probability
from utils.logger import get_logger
from utils.rate_limiter import TokenBucketRateLimiter


logger = get_logger(__name__)


class StaticMarketFeed:
    """In-memory feed returning whatever snapshot list it currently holds"""

    def __init__(self, markets: Optional[Sequence[MarketSnapshot]] = None):
        self._markets: List[MarketSnapshot] = list(markets or [])
        self.fetch_count = 0

    def set_markets(self, markets: Sequence[MarketSnapshot]) -> None:
        self._markets = list(markets)

    async def fetch_markets(self) -> List[MarketSnapshot]:
        self.fetch_count += 1
        return list(self._markets)


class GammaMarketFeed:
    """Active markets from the Gamma API"""

    def __init__(
        self,
        limit: int = 200,
        base_url: str = GAMMA_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        self.limit = limit
        self.base_url = base_url.rstrip('/')
        self._session = session
        self._owns_session = session is None
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(
            rate=GAMMA_READ_RATE_PER_SEC,
            capacity=GAMMA_READ_BURST,
        )

        self.total_fetches = 0
        self.skipped_records = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=API_TIMEOUT_SEC),
                headers={
                    "User-Agent": "Polymarket-Arb-Engine/1.0",
                    "Accept": "application/json"
                }
            )
            self._owns_session = True
        return self._session

    async def fetch_markets(self) -> List[MarketSnapshot]:
        records = await self._fetch_records()
        self.total_fetches += 1

        markets = []
        for record in records:
            snapshot = self.parse_record(record)
            if snapshot is None:
                self.skipped_records += 1
                continue
            markets.append(snapshot)

        logger.debug(f"Fetched {len(markets)} markets from Gamma ({len(records) - len(markets)} skipped)")
        return markets

    @async_retry_with_backoff(max_retries=MAX_RETRIES, base_delay=RETRY_BASE_DELAY)
    async def _fetch_records(self) -> List[Dict[str, Any]]:
        await self.rate_limiter.acquire()
        session = await self._get_session()

        params = {
            'limit': self.limit,
            'active': 'true',
            'closed': 'false',
            'order': 'volume24hr',
            'ascending': 'false',
        }
        try:
            async with session.get(f"{self.base_url}/markets", params=params) as response:
                if response.status == 429:
                    raise RateLimitError("Gamma API rate limit exceeded", status_code=429)
                if response.status != 200:
                    raise APIError(f"Gamma API error: HTTP {response.status}", status_code=response.status)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise APITimeoutError(f"Gamma request timed out after {API_TIMEOUT_SEC}s", original_error=e)
        except aiohttp.ClientError as e:
            raise APIError(f"Failed to fetch markets: {e}", original_error=e)

        # Gamma returns a bare array; older deployments wrapped it in {'data': [...]}
        if isinstance(data, dict):
            data = data.get('data', [])
        if not isinstance(data, list):
            raise InvalidResponseError("Gamma markets response is not a list", response_data=str(data)[:200])
        return data

    @staticmethod
    def parse_record(record: Dict[str, Any]) -> Optional[MarketSnapshot]:
        """Snapshot from one Gamma record, or None when unusable"""
        try:
            snapshot = MarketSnapshot.from_gamma(record)
            validate_liquidity(snapshot.liquidity)
            for index, price in enumerate(snapshot.prices):
                validate_probability(price, field=f"prices[{index}]")
        except DataValidationError as e:
            logger.debug(f"Skipping Gamma record {record.get('id')}: {e.message}")
            return None
        return snapshot

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Closed Gamma feed aiohttp session")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_fetches': self.total_fetches,
            'skipped_records': self.skipped_records,
        }
