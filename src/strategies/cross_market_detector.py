"""
Cross-Market Arbitrage Detector

Finds the SAME event listed as two markets at different prices.

    exact match:   YES1 should equal YES2    -> compare YES1 vs YES2
    inverse match: YES1 should equal NO2     -> compare YES1 vs NO2

The cheaper side becomes market1 (BUY), the dearer side market2 (SELL).

    profit% = |price gap| / cheaper price * 100 - 1.0% round-trip fee

Pair discovery is delegated to QuestionSimilarityMatcher, which rejects
competing alternatives ("Lakers win" vs "Celtics win") before scoring.
"""

from typing import List, Optional, Sequence

from config.constants import CROSS_MARKET_MAX_PRICE, CROSS_MARKET_MIN_PRICE
from config.settings import ArbitrageSettings
from core.models import CrossMarketOpportunity, MarketSnapshot, MatchType, OpportunityType, Outcome
from matchers.question_similarity import MarketMatch, QuestionSimilarityMatcher
from strategies.base_detector import BaseDetector


def _valid_price(price: Optional[float]) -> bool:
    return price is not None and CROSS_MARKET_MIN_PRICE < price < CROSS_MARKET_MAX_PRICE


class CrossMarketDetector(BaseDetector):
    """Same-event price discrepancies across market pairs"""

    opportunity_type = OpportunityType.CROSS_MARKET

    def __init__(self, settings: ArbitrageSettings, matcher: Optional[QuestionSimilarityMatcher] = None):
        super().__init__(settings)
        self.matcher = matcher or QuestionSimilarityMatcher(min_similarity_score=settings.min_similarity_score)

    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[CrossMarketOpportunity]:
        # Both legs must clear the floor, so thin markets never enter pairing
        liquid = [m for m in markets if self.meets_liquidity(m.liquidity)]

        opportunities = []
        for match in self.matcher.find_matches(liquid):
            opportunity = self.analyze_match(match)
            if opportunity:
                opportunities.append(opportunity)
        return opportunities

    def analyze_match(self, match: MarketMatch) -> Optional[CrossMarketOpportunity]:
        market1, market2 = match.market1, match.market2
        if not (self.meets_liquidity(market1.liquidity) and self.meets_liquidity(market2.liquidity)):
            return None

        yes1 = market1.yes_price
        if match.match_type == MatchType.EXACT:
            price2, outcome2 = market2.yes_price, Outcome.YES
        else:
            price2, outcome2 = market2.no_price, Outcome.NO

        if not (_valid_price(yes1) and _valid_price(market2.yes_price) and _valid_price(price2)):
            return None

        price_diff = abs(yes1 - price2)
        if yes1 < price2:
            cheap = (market1, Outcome.YES, yes1)
            dear = (market2, outcome2, price2)
        else:
            cheap = (market2, outcome2, price2)
            dear = (market1, Outcome.YES, yes1)

        cheap_market, cheap_outcome, cheap_price = cheap
        dear_market, dear_outcome, dear_price = dear

        profit_percent = self.net_profit_percent(price_diff / cheap_price * 100)
        if not self.meets_profit_threshold(profit_percent):
            return None

        confidence = self.calculate_confidence(match, price_diff)
        if not self.meets_confidence(confidence):
            return None

        return CrossMarketOpportunity(
            market1_id=cheap_market.id,
            market1_question=cheap_market.question,
            market1_price=cheap_price,
            market1_outcome=cheap_outcome,
            market1_liquidity=cheap_market.liquidity,
            market2_id=dear_market.id,
            market2_question=dear_market.question,
            market2_price=dear_price,
            market2_outcome=dear_outcome,
            market2_liquidity=dear_market.liquidity,
            match_type=match.match_type,
            similarity_score=match.similarity_score,
            shared_entities=list(match.shared_entities),
            spread=price_diff,
            profit_percent=profit_percent,
            confidence_score=confidence,
        )

    def calculate_confidence(self, match: MarketMatch, price_diff: float) -> float:
        confidence = match.similarity_score * 0.5

        min_liquidity = min(match.market1.liquidity, match.market2.liquidity)
        if min_liquidity >= 50_000:
            confidence += 0.20
        elif min_liquidity >= 20_000:
            confidence += 0.10

        # Big gaps between near-identical questions are usually different events
        if price_diff > 0.15 and match.similarity_score > 0.8:
            confidence -= 0.20

        shared = len(match.shared_entities)
        if shared >= 3:
            confidence += 0.15
        elif shared >= 2:
            confidence += 0.10

        if match.market1.category == match.market2.category:
            confidence += 0.10

        return self.clamp_confidence(confidence)
