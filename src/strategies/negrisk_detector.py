"""
NegRisk (N-way Coherence) Detector

Events with three or more mutually exclusive, exhaustive outcomes (exactly one
resolves YES) must price their YES tokens to sum to 1.0.

    sum < 1.0  -> long_rebalancing:  BUY every YES token
    sum > 1.0  -> short_rebalancing: BUY every NO token

    deviation = |1 - sum(YES)|
    profit%   = deviation * 100 - 1.0% round-trip fee

Markets are grouped by negRiskMarketID, falling back to the event slug.
Markets explicitly flagged neg_risk=False never join a group. Binary events
(fewer than three conditions) are left to the multi-outcome detector.
"""

from typing import Dict, List, Optional, Sequence

from config.constants import (
    EVENT_TITLE_MAX_CHARS,
    NEGRISK_DEFAULT_YES_PRICE,
    NEGRISK_LOW_LIQUIDITY_USD,
    NEGRISK_MIN_CONDITIONS,
)
from core.models import (
    MarketSnapshot,
    NegRiskCondition,
    NegRiskDirection,
    NegRiskOpportunity,
    OpportunityType,
)
from strategies.base_detector import BaseDetector


class NegRiskDetector(BaseDetector):
    """Sum-of-YES coherence check across N-way event groups"""

    opportunity_type = OpportunityType.NEGRISK

    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[NegRiskOpportunity]:
        opportunities = []
        for event_id, conditions in self.group_markets_by_event(markets).items():
            if len(conditions) < NEGRISK_MIN_CONDITIONS:
                continue

            opportunity = self.analyze_event(event_id, conditions)
            if opportunity:
                opportunities.append(opportunity)
        return opportunities

    @staticmethod
    def group_markets_by_event(markets: Sequence[MarketSnapshot]) -> Dict[str, List[NegRiskCondition]]:
        groups: Dict[str, List[NegRiskCondition]] = {}

        for market in markets:
            event_key = market.group_id
            if not event_key or market.neg_risk is False:
                continue

            yes_price = market.yes_price or NEGRISK_DEFAULT_YES_PRICE
            no_price = market.no_price or (1 - yes_price)

            groups.setdefault(event_key, []).append(NegRiskCondition(
                market_id=market.condition_id or market.id,
                question=market.question,
                yes_price=yes_price,
                no_price=no_price,
                liquidity=market.liquidity,
            ))

        return groups

    def analyze_event(self, event_id: str, conditions: List[NegRiskCondition]) -> Optional[NegRiskOpportunity]:
        total_yes = sum(c.yes_price for c in conditions)
        deviation = abs(1.0 - total_yes)

        profit_percent = self.net_profit_percent(deviation * 100)
        if not self.meets_profit_threshold(profit_percent):
            return None

        min_liquidity = min(c.liquidity for c in conditions)
        if not self.meets_liquidity(min_liquidity):
            return None

        confidence = self.calculate_confidence(conditions, deviation, min_liquidity)
        if not self.meets_confidence(confidence):
            return None

        primary = max(conditions, key=lambda c: c.liquidity)

        return NegRiskOpportunity(
            market1_id=primary.market_id,
            market1_question=primary.question,
            market1_price=primary.yes_price,
            market1_liquidity=primary.liquidity,
            event_id=event_id,
            event_title=self.extract_event_title(conditions),
            conditions=list(conditions),
            total_yes_price_sum=total_yes,
            direction=(
                NegRiskDirection.LONG_REBALANCING if total_yes < 1
                else NegRiskDirection.SHORT_REBALANCING
            ),
            min_condition_liquidity=min_liquidity,
            spread=deviation,
            profit_percent=profit_percent,
            confidence_score=confidence,
        )

    def calculate_confidence(
        self,
        conditions: List[NegRiskCondition],
        deviation: float,
        min_liquidity: float,
    ) -> float:
        confidence = 0.5

        # More conditions are harder to push out of line together
        count = len(conditions)
        if count >= 10:
            confidence += 0.15
        elif count >= 5:
            confidence += 0.10
        elif count >= 3:
            confidence += 0.05

        if min_liquidity >= 50_000:
            confidence += 0.20
        elif min_liquidity >= 20_000:
            confidence += 0.10
        elif min_liquidity >= 10_000:
            confidence += 0.05

        # Extreme deviations usually mean stale quotes
        if deviation > 0.10:
            confidence -= 0.30
        elif deviation > 0.05:
            confidence -= 0.15
        elif deviation > 0.03:
            confidence -= 0.05

        if any(c.yes_price < 0.01 or c.yes_price > 0.99 for c in conditions):
            confidence -= 0.20

        thin_legs = sum(1 for c in conditions if c.liquidity < NEGRISK_LOW_LIQUIDITY_USD)
        if thin_legs > count / 2:
            confidence -= 0.15

        return self.clamp_confidence(confidence)

    @staticmethod
    def extract_event_title(conditions: List[NegRiskCondition]) -> str:
        """Longest common word prefix of the questions, else the first question truncated"""
        if not conditions:
            return 'Unknown Event'

        questions = [c.question for c in conditions]
        first_words = questions[0].split(' ')

        common_prefix = ''
        for i in range(len(first_words)):
            prefix = ' '.join(first_words[:i + 1])
            if all(q.startswith(prefix) for q in questions):
                common_prefix = prefix
            else:
                break

        return common_prefix or questions[0][:EVENT_TITLE_MAX_CHARS]
