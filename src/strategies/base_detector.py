"""
Base Detector Abstract Class
Defines the interface that all arbitrage detectors must implement
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from config.constants import ROUND_TRIP_FEE_PERCENT
from config.settings import ArbitrageSettings
from core.models import MarketSnapshot, Opportunity, OpportunityType
from utils.exceptions import DetectorError
from utils.helpers import clamp
from utils.logger import get_logger


logger = get_logger(__name__)


class BaseDetector(ABC):
    """
    Abstract base class for arbitrage detectors.

    Every detector applies the same three gates independently: the
    minimum-liquidity floor, the minimum net-of-fee profit threshold and the
    minimum confidence. An opportunity failing any gate is never built.
    """

    opportunity_type: OpportunityType

    def __init__(self, settings: ArbitrageSettings):
        """
        Initialize detector

        Args:
            settings: Engine settings (thresholds and liquidity floor)
        """
        self.settings = settings
        self.min_profit_threshold = settings.min_profit_threshold
        self.min_confidence = settings.min_confidence
        self.min_liquidity = settings.min_liquidity_usd
        self.fee_percent = ROUND_TRIP_FEE_PERCENT

        self.name = self.__class__.__name__
        logger.debug(f"Detector initialized: {self.name}")

    @abstractmethod
    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[Opportunity]:
        """
        Scan one cycle's markets

        Must be implemented by subclasses. Order of the returned list does
        not matter; detect() sorts it.
        """
        pass

    async def detect(self, markets: Sequence[MarketSnapshot]) -> List[Opportunity]:
        """
        Run the detector over a snapshot of markets

        Returns:
            Opportunities sorted by profit percentage, best first

        Raises:
            DetectorError: If the scan itself fails
        """
        try:
            opportunities = await self.find_opportunities(markets)
        except DetectorError:
            raise
        except Exception as e:
            raise DetectorError(
                f"{self.name} failed: {e}",
                detector_name=self.name,
                details={'market_count': len(markets)},
                original_error=e
            ) from e
        opportunities.sort(key=lambda o: o.profit_percent, reverse=True)

        if opportunities:
            logger.debug(
                f"{self.name}: {len(opportunities)} opportunities",
                extra={'detector': self.name, 'count': len(opportunities)}
            )
        return opportunities

    @property
    def enabled(self) -> bool:
        return True

    # ========================================================================
    # SHARED GATES
    # ========================================================================

    def net_profit_percent(self, gross_percent: float) -> float:
        return gross_percent - self.fee_percent

    def meets_profit_threshold(self, profit_percent: float) -> bool:
        return profit_percent >= self.min_profit_threshold

    def meets_confidence(self, confidence: float) -> bool:
        return confidence >= self.min_confidence

    def meets_liquidity(self, liquidity: float) -> bool:
        return liquidity >= self.min_liquidity

    @staticmethod
    def clamp_confidence(confidence: float) -> float:
        return clamp(confidence, 0.0, 1.0)
