"""
Semantic Dependency Detector

LLM-backed generalization of the related-market detector: instead of a fixed
rule table, a chat model classifies how two questions relate (subset,
superset, mutual exclusion, logical bound, nested target, temporal, none) and
states the probability constraint prices must satisfy.

Cost control:
1. Entity pre-filter: a pair must share a proper name AND a market keyword
2. Pairs cached as "none" are skipped outright
3. Remaining pairs are ranked by 2 * shared names + shared keywords and capped
   per cycle (default 50)
4. Every classification, including failures and "none", is cached for an hour

Violation by expected relation (p1, p2 = YES prices of market1, market2):
    gte       -> max(0, p2 - p1)
    lte       -> max(0, p1 - p2)
    eq        -> |p1 - p2|
    exclusive -> max(0, p1 + p2 - 1)

Confidence = min(1, 0.8 * model confidence + 0.1 [both legs >= $20k] + 0.1)
"""

from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.constants import MIN_CONSTRAINT_VIOLATION, SEMANTIC_LIQUIDITY_BONUS_USD
from config.settings import ArbitrageSettings
from core.models import (
    ExpectedRelation,
    MarketSnapshot,
    OpportunityType,
    SemanticDependencyOpportunity,
)
from llm.llm_client import LLMClient
from llm.prompt_templates import (
    SYSTEM_PROMPT,
    SemanticAnalysisResult,
    build_user_prompt,
    parse_analysis_response,
    to_analysis_result,
)
from llm.semantic_cache import SemanticCache
from matchers.entity_extractor import EntityExtractor, ExtractedEntities
from strategies.base_detector import BaseDetector
from utils.exceptions import ArbitrageBotError
from utils.logger import get_logger, log_error_with_context


logger = get_logger(__name__)

# Price shown to the model / used for violations when a market has no quote
_DEFAULT_PRICE = 0.5


def compute_violation(relation: ExpectedRelation, price1: float, price2: float) -> float:
    if relation == ExpectedRelation.GTE:
        return max(0.0, price2 - price1)
    if relation == ExpectedRelation.LTE:
        return max(0.0, price1 - price2)
    if relation == ExpectedRelation.EQ:
        return abs(price1 - price2)
    if relation == ExpectedRelation.EXCLUSIVE:
        return max(0.0, price1 + price2 - 1)
    raise ValueError(f"Unhandled expected relation: {relation}")


class SemanticDependencyDetector(BaseDetector):
    """Model-inferred dependency violations between market pairs"""

    opportunity_type = OpportunityType.SEMANTIC_DEPENDENCY

    def __init__(
        self,
        settings: ArbitrageSettings,
        llm_client: LLMClient,
        cache: SemanticCache,
        extractor: Optional[EntityExtractor] = None,
    ):
        super().__init__(settings)
        self.llm_client = llm_client
        self.cache = cache
        self.extractor = extractor or EntityExtractor()
        self.max_pairs_per_cycle = settings.llm_max_pairs_per_cycle
        self.llm_min_confidence = settings.llm_min_confidence

        self.pairs_analyzed = 0
        self.analysis_failures = 0

    @property
    def enabled(self) -> bool:
        return self.llm_client.is_enabled()

    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[SemanticDependencyOpportunity]:
        if not self.enabled:
            return []

        candidates = self.find_candidate_pairs(markets)
        if candidates:
            logger.info(f"🧠 Semantic detector: analyzing {len(candidates)} candidate pairs")

        opportunities = []
        for market1, market2 in candidates:
            analysis = await self.analyze_pair(market1, market2)
            if analysis is None or analysis.is_negative:
                continue

            opportunity = self.create_opportunity(market1, market2, analysis)
            if opportunity:
                opportunities.append(opportunity)
        return opportunities

    # ========================================================================
    # CANDIDATE SELECTION
    # ========================================================================

    def find_candidate_pairs(self, markets: Sequence[MarketSnapshot]) -> List[Tuple[MarketSnapshot, MarketSnapshot]]:
        liquid = [m for m in markets if self.meets_liquidity(m.liquidity)]
        entities: Dict[str, ExtractedEntities] = {m.id: self.extractor.extract(m.question) for m in liquid}

        scored = []
        for market1, market2 in combinations(liquid, 2):
            e1, e2 = entities[market1.id], entities[market2.id]
            shared_names = sum(1 for n in e1.names if n in e2.names)
            shared_keywords = sum(1 for k in e1.keywords if k in e2.keywords)
            if shared_names == 0 or shared_keywords == 0:
                continue

            cached = self.cache.peek(market1.id, market2.id)
            if cached is not None and cached.is_negative:
                continue

            scored.append((shared_names * 2 + shared_keywords, market1, market2))

        # Stable sort keeps discovery order among equal scores
        scored.sort(key=lambda item: item[0], reverse=True)
        return [(m1, m2) for _, m1, m2 in scored[:self.max_pairs_per_cycle]]

    # ========================================================================
    # CLASSIFICATION
    # ========================================================================

    async def analyze_pair(self, market1: MarketSnapshot, market2: MarketSnapshot) -> Optional[SemanticAnalysisResult]:
        """Cached classification of a pair; failures are cached as negative"""
        cached = self.cache.get(market1.id, market2.id)
        if cached is not None:
            return cached

        self.pairs_analyzed += 1
        prompt = build_user_prompt(
            market1.question,
            market1.yes_price or _DEFAULT_PRICE,
            market2.question,
            market2.yes_price or _DEFAULT_PRICE,
        )

        try:
            reply = await self.llm_client.chat([
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ])
        except ArbitrageBotError as e:
            self.analysis_failures += 1
            log_error_with_context(
                logger, "LLM analysis failed", e,
                market1_id=market1.id, market2_id=market2.id
            )
            self.cache.set(SemanticAnalysisResult.negative(market1.id, market2.id, reasoning=f"Analysis failed: {e.message}"))
            return None

        parsed = parse_analysis_response(reply)
        if not parsed.ok:
            self.analysis_failures += 1
            logger.warning(
                f"Unparseable LLM reply for pair {market1.id[:12]}/{market2.id[:12]}: {parsed.error}",
                extra={'market1_id': market1.id, 'market2_id': market2.id}
            )
            result = SemanticAnalysisResult.negative(market1.id, market2.id, reasoning=parsed.error or 'Parse failure')
        elif parsed.response.relationship_type == 'none':
            result = SemanticAnalysisResult.negative(market1.id, market2.id)
        else:
            result = to_analysis_result(market1.id, market2.id, parsed.response)

        self.cache.set(result)
        return None if result.is_negative else result

    # ========================================================================
    # OPPORTUNITY CONSTRUCTION
    # ========================================================================

    def create_opportunity(
        self,
        market1: MarketSnapshot,
        market2: MarketSnapshot,
        analysis: SemanticAnalysisResult,
    ) -> Optional[SemanticDependencyOpportunity]:
        if analysis.confidence < self.llm_min_confidence:
            return None
        if analysis.constraint is None or analysis.buy_market_id is None:
            return None
        if not (self.meets_liquidity(market1.liquidity) and self.meets_liquidity(market2.liquidity)):
            return None

        # Analysis may have been cached with the pair in the other order
        if analysis.market1_id == market2.id:
            market1, market2 = market2, market1

        price1 = market1.yes_price or _DEFAULT_PRICE
        price2 = market2.yes_price or _DEFAULT_PRICE

        violation = compute_violation(analysis.constraint.expected_relation, price1, price2)
        if violation < MIN_CONSTRAINT_VIOLATION:
            return None

        profit_percent = self.net_profit_percent(violation * 100)
        if not self.meets_profit_threshold(profit_percent):
            return None

        if analysis.buy_market_id == market1.id:
            buy, sell = market1, market2
        else:
            buy, sell = market2, market1

        liquidity_bonus = 0.1 if min(buy.liquidity, sell.liquidity) >= SEMANTIC_LIQUIDITY_BONUS_USD else 0.0
        confidence = self.clamp_confidence(min(1.0, analysis.confidence * 0.8 + liquidity_bonus + 0.1))
        if not self.meets_confidence(confidence):
            return None

        return SemanticDependencyOpportunity(
            market1_id=buy.id,
            market1_question=buy.question,
            market1_price=buy.yes_price or _DEFAULT_PRICE,
            market1_liquidity=buy.liquidity,
            market2_id=sell.id,
            market2_question=sell.question,
            market2_price=sell.yes_price or _DEFAULT_PRICE,
            market2_liquidity=sell.liquidity,
            semantic_relationship=analysis.relationship,
            constraint_expression=analysis.constraint.expression,
            expected_relation=analysis.constraint.expected_relation,
            constraint_violation=violation,
            llm_confidence=analysis.confidence,
            llm_reasoning=analysis.reasoning,
            spread=violation,
            profit_percent=profit_percent,
            confidence_score=confidence,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'pairs_analyzed': self.pairs_analyzed,
            'analysis_failures': self.analysis_failures,
            'cache': self.cache.get_stats(),
            'llm': self.llm_client.get_stats(),
        }
