"""
Multi-Outcome Spread Detector

A binary market's YES and NO tokens together pay exactly $1.00, so
YES + NO should sum to 1.0. When it doesn't:

    sum > 1.0  -> overpriced:  SELL both YES and NO
    sum < 1.0  -> underpriced: BUY both YES and NO

    spread  = |1 - (yes + no)|
    profit% = spread * 100 - 1.0% round-trip fee

Wide spreads are treated as a stale-data symptom and lower confidence.
"""

import time
from typing import List, Optional, Sequence

from core.models import MarketSnapshot, MultiOutcomeOpportunity, OpportunityType, SpreadDirection
from strategies.base_detector import BaseDetector


class MultiOutcomeDetector(BaseDetector):
    """YES + NO coherence check on individual binary markets"""

    opportunity_type = OpportunityType.MULTI_OUTCOME

    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[MultiOutcomeOpportunity]:
        opportunities = []
        for market in markets:
            opportunity = self.analyze_market(market)
            if opportunity:
                opportunities.append(opportunity)
        return opportunities

    def analyze_market(self, market: MarketSnapshot) -> Optional[MultiOutcomeOpportunity]:
        if not self.meets_liquidity(market.liquidity):
            return None

        yes_price = market.yes_price
        no_price = market.no_price
        if yes_price is None or no_price is None:
            return None
        if not (0 < yes_price < 1 and 0 < no_price < 1):
            return None

        price_sum = yes_price + no_price
        spread = abs(1.0 - price_sum)
        profit_percent = self.net_profit_percent(spread * 100)
        if not self.meets_profit_threshold(profit_percent):
            return None

        confidence = self.calculate_confidence(market, spread)
        if not self.meets_confidence(confidence):
            return None

        return MultiOutcomeOpportunity(
            market1_id=market.id,
            market1_question=market.question,
            market1_price=yes_price,
            market1_liquidity=market.liquidity,
            yes_price=yes_price,
            no_price=no_price,
            price_sum=price_sum,
            direction=SpreadDirection.OVERPRICED if price_sum > 1.0 else SpreadDirection.UNDERPRICED,
            spread=spread,
            profit_percent=profit_percent,
            confidence_score=confidence,
        )

    def calculate_confidence(self, market: MarketSnapshot, spread: float, now: Optional[float] = None) -> float:
        """Score 0-1 from liquidity, spread size, volume and time to close"""
        confidence = 0.5

        # Deeper markets quote real prices
        if market.liquidity >= 100_000:
            confidence += 0.25
        elif market.liquidity >= 50_000:
            confidence += 0.15
        elif market.liquidity >= 20_000:
            confidence += 0.10

        # Large spreads are suspicious (stale data)
        if spread > 0.05:
            confidence -= 0.30
        elif spread > 0.03:
            confidence -= 0.15
        elif spread > 0.02:
            confidence -= 0.05

        if market.volume >= 100_000:
            confidence += 0.10

        days_left = market.days_until_close(now if now is not None else time.time())
        if days_left is not None:
            if days_left < 1:
                confidence -= 0.20
            elif days_left < 7:
                confidence -= 0.05

        return self.clamp_confidence(confidence)
