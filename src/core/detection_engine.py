"""
Detection Engine - Detector Fan-out, Dedup & Opportunity Tracking

Per cycle:
1. Run every enabled detector concurrently; a detector that raises is logged
   and contributes nothing, it never aborts the cycle
2. Merge, sort by profit% (best first) and dedup by canonical key, keeping the
   most profitable instance
3. Classify "new" opportunities against the tracking map as it stood BEFORE
   this cycle:
      - key never tracked                          -> new
      - key seen exactly once before               -> new (confirmation)
      - profit moved > 0.5 pp since last sighting  -> new (significant change)
4. Update the tracking map (seen count, spread history, last seen)

expire_old_opportunities() evicts keys unseen for more than 5 minutes and
marks them expired in the repository (best-effort).

The tracking map is single-writer: only the orchestrator's cycle task calls
detect() / expire_old_opportunities() / mark_executed().
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from config.constants import OPPORTUNITY_EXPIRY_SEC, SIGNIFICANT_PROFIT_CHANGE_PCT
from config.settings import ArbitrageSettings
from core.models import (
    MarketSnapshot,
    Opportunity,
    OpportunityStatus,
    OpportunityType,
    SpreadSample,
    TrackedOpportunity,
)
from strategies.base_detector import BaseDetector
from utils.exceptions import ArbitrageBotError
from utils.logger import get_logger, log_error_with_context


logger = get_logger(__name__)


@dataclass
class DetectionResult:
    """Aggregated output of one detection cycle"""
    timestamp: float
    opportunities: List[Opportunity]
    new_opportunities: List[Opportunity]
    by_type: Dict[str, int]
    detector_errors: Dict[str, str] = field(default_factory=dict)
    detection_time_ms: float = 0.0

    @property
    def total_opportunities(self) -> int:
        return len(self.opportunities)


class DetectionEngine:
    """Runs detectors, deduplicates their output and tracks it across cycles"""

    def __init__(
        self,
        detectors: Sequence[BaseDetector],
        repository=None,
        expiry_sec: float = OPPORTUNITY_EXPIRY_SEC,
    ):
        """
        Args:
            detectors: Enabled detectors, run concurrently each cycle
            repository: OpportunityRepository for expiry status updates (optional)
            expiry_sec: Tracked keys unseen for longer than this are expired
        """
        self.detectors = list(detectors)
        self.repository = repository
        self.expiry_sec = expiry_sec
        self._tracked: Dict[str, TrackedOpportunity] = {}
        self.cycles_run = 0

        logger.info(
            f"🔍 DetectionEngine initialized with {len(self.detectors)} detectors: "
            f"{', '.join(d.name for d in self.detectors)}"
        )

    @classmethod
    def from_settings(cls, settings: ArbitrageSettings, repository=None, semantic_detector=None) -> "DetectionEngine":
        """Build the engine with the detectors the settings enable"""
        from strategies.cross_market_detector import CrossMarketDetector
        from strategies.multi_outcome_detector import MultiOutcomeDetector
        from strategies.negrisk_detector import NegRiskDetector
        from strategies.related_market_detector import RelatedMarketDetector

        detectors: List[BaseDetector] = []
        if settings.enable_multi_outcome:
            detectors.append(MultiOutcomeDetector(settings))
        if settings.enable_negrisk:
            detectors.append(NegRiskDetector(settings))
        if settings.enable_cross_market:
            detectors.append(CrossMarketDetector(settings))
        if settings.enable_related_market:
            detectors.append(RelatedMarketDetector(settings))
        if settings.enable_semantic_dependency and semantic_detector is not None:
            detectors.append(semantic_detector)

        return cls(detectors, repository=repository)

    # ========================================================================
    # DETECTION
    # ========================================================================

    async def detect(self, markets: Sequence[MarketSnapshot], now: Optional[float] = None) -> DetectionResult:
        started = time.perf_counter()
        now = now if now is not None else time.time()
        self.cycles_run += 1

        results = await asyncio.gather(
            *(detector.detect(markets) for detector in self.detectors),
            return_exceptions=True,
        )

        merged: List[Opportunity] = []
        errors: Dict[str, str] = {}
        for detector, result in zip(self.detectors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors[detector.name] = str(result)
                log_error_with_context(
                    logger, f"Detector {detector.name} failed", result,
                    detector=detector.name, market_count=len(markets)
                )
                continue
            merged.extend(result)

        opportunities = self.filter_and_dedupe(merged)
        new_opportunities = self.classify_new(opportunities)
        self.update_tracking(opportunities, now)

        by_type = {t.value: 0 for t in OpportunityType}
        for opportunity in opportunities:
            by_type[opportunity.opportunity_type.value] += 1

        result = DetectionResult(
            timestamp=now,
            opportunities=opportunities,
            new_opportunities=new_opportunities,
            by_type=by_type,
            detector_errors=errors,
            detection_time_ms=(time.perf_counter() - started) * 1000,
        )

        logger.debug(
            f"Detection cycle {self.cycles_run}: {result.total_opportunities} opportunities "
            f"({len(new_opportunities)} new) in {result.detection_time_ms:.0f}ms",
            extra={'by_type': by_type, 'detector_errors': errors}
        )
        return result

    @staticmethod
    def filter_and_dedupe(opportunities: List[Opportunity]) -> List[Opportunity]:
        """Sort by profit and keep the best instance per canonical key"""
        ranked = sorted(opportunities, key=lambda o: o.profit_percent, reverse=True)
        seen = set()
        unique = []
        for opportunity in ranked:
            key = opportunity.dedup_key()
            if key in seen:
                continue
            seen.add(key)
            unique.append(opportunity)
        return unique

    def classify_new(self, opportunities: List[Opportunity]) -> List[Opportunity]:
        """Alert-worthy subset, judged against the tracking map before update"""
        new = []
        for opportunity in opportunities:
            tracked = self._tracked.get(opportunity.dedup_key())
            if tracked is None:
                new.append(opportunity)
            elif tracked.seen_count == 1:
                new.append(opportunity)
            elif abs(opportunity.profit_percent - tracked.opportunity.profit_percent) > SIGNIFICANT_PROFIT_CHANGE_PCT:
                new.append(opportunity)
        return new

    def update_tracking(self, opportunities: List[Opportunity], now: float) -> None:
        for opportunity in opportunities:
            key = opportunity.dedup_key()
            tracked = self._tracked.get(key)
            if tracked is not None:
                if tracked.executed:
                    opportunity.status = OpportunityStatus.EXECUTED
                tracked.record_sighting(opportunity, now)
            else:
                tracked = TrackedOpportunity(opportunity=opportunity, first_seen_at=now, last_seen_at=now)
                tracked.spread_history.append(SpreadSample(timestamp=now, spread=opportunity.spread))
                self._tracked[key] = tracked

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def expire_old_opportunities(self, now: Optional[float] = None) -> List[TrackedOpportunity]:
        """Evict keys unseen for longer than the expiry window"""
        now = now if now is not None else time.time()
        expired_keys = [k for k, t in self._tracked.items() if now - t.last_seen_at > self.expiry_sec]

        expired = []
        for key in expired_keys:
            tracked = self._tracked.pop(key)
            tracked.opportunity.status = OpportunityStatus.EXPIRED
            expired.append(tracked)

            if self.repository is not None and tracked.opportunity.id:
                try:
                    await self.repository.update_opportunity_status(tracked.opportunity.id, OpportunityStatus.EXPIRED)
                except ArbitrageBotError as e:
                    log_error_with_context(
                        logger, "Failed to persist expired status", e,
                        opportunity_key=key, opportunity_id=tracked.opportunity.id
                    )

        if expired:
            logger.info(f"⌛ Expired {len(expired)} opportunities")
        return expired

    def mark_executed(self, opportunity: Opportunity) -> bool:
        tracked = self._tracked.get(opportunity.dedup_key())
        opportunity.status = OpportunityStatus.EXECUTED
        if tracked is None:
            return False
        tracked.executed = True
        tracked.opportunity.status = OpportunityStatus.EXECUTED
        return True

    def get_tracked(self, key: str) -> Optional[TrackedOpportunity]:
        return self._tracked.get(key)

    def get_tracked_opportunities(self) -> List[TrackedOpportunity]:
        return list(self._tracked.values())

    def get_stats(self) -> Dict[str, Any]:
        tracked = list(self._tracked.values())
        by_type = {t.value: 0 for t in OpportunityType}
        for entry in tracked:
            by_type[entry.opportunity.opportunity_type.value] += 1

        avg_profit = sum(t.opportunity.profit_percent for t in tracked) / len(tracked) if tracked else 0.0
        return {
            'tracked': len(tracked),
            'by_type': by_type,
            'avg_profit_percent': avg_profit,
            'executed': sum(1 for t in tracked if t.executed),
            'cycles_run': self.cycles_run,
        }
