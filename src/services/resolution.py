"""
Resolution Sources

Answer "has this market resolved, and what did YES pay?" for markets the
risk manager still holds positions in.

NullResolutionSource  - never resolves; positions stay open until restart
GammaResolutionSource - reads the Gamma market record; a closed market whose
                        YES price has settled at (or within a cent of) 0 or 1
                        is treated as resolved at exactly 0.0 / 1.0
"""

import asyncio
from typing import Dict, Optional

import aiohttp

from config.constants import API_TIMEOUT_SEC, GAMMA_API_URL
from core.models import MarketSnapshot
from utils.exceptions import APIError, APITimeoutError
from utils.logger import get_logger


logger = get_logger(__name__)

# A settled YES price this close to 0 or 1 counts as a final payout
RESOLUTION_TOLERANCE = 0.01


class NullResolutionSource:
    async def get_resolution(self, market_id: str) -> Optional[float]:
        return None


class GammaResolutionSource:
    """Resolution lookups against GET /markets?condition_ids=..."""

    def __init__(self, base_url: str = GAMMA_API_URL, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self._session = session
        self._owns_session = session is None
        self._resolved: Dict[str, float] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=API_TIMEOUT_SEC))
            self._owns_session = True
        return self._session

    async def get_resolution(self, market_id: str) -> Optional[float]:
        if market_id in self._resolved:
            return self._resolved[market_id]

        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/markets", params={'condition_ids': market_id}) as response:
                if response.status != 200:
                    raise APIError(f"Gamma resolution lookup failed: HTTP {response.status}", status_code=response.status)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise APITimeoutError(f"Gamma resolution lookup timed out for {market_id}", original_error=e)
        except aiohttp.ClientError as e:
            raise APIError(f"Gamma resolution lookup failed: {e}", original_error=e)

        records = data if isinstance(data, list) else (data or {}).get('data', [])
        if not records:
            return None

        payout = self.resolve_record(records[0])
        if payout is not None:
            self._resolved[market_id] = payout
            logger.info(f"🏁 Market resolved: {market_id[:16]} -> YES paid {payout:.0f}")
        return payout

    @staticmethod
    def resolve_record(record: Dict) -> Optional[float]:
        """Final YES payout of a closed, settled record; None otherwise"""
        if not record.get('closed'):
            return None

        yes_price = MarketSnapshot.from_gamma(record).yes_price
        if yes_price is None:
            return None
        if yes_price >= 1 - RESOLUTION_TOLERANCE:
            return 1.0
        if yes_price <= RESOLUTION_TOLERANCE:
            return 0.0
        return None

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
