"""
Related-Market (Rule-Based Constraint) Detector

Some questions logically imply others. Winning the general election requires
winning the primary, so P(win primary) >= P(win general). When prices break
such an implication the cheap (implied-higher) side is bought and the dear
side sold.

Relationships live in RELATIONSHIP_RULES, a declarative table of
RelationshipRule entries. Adding a relationship means adding a row; the
control flow never changes.

    violation = shortfall of the side that should price higher (>= 1.5 pp)
    profit%   = violation * 100 - 1.0% round-trip fee

Pairs are compared within each category, and additionally across the politics
categories, and must share at least one proper-name entity.
"""

import re
from dataclasses import dataclass
from itertools import combinations
from typing import Callable, Dict, List, Optional, Pattern, Sequence

from config.constants import MIN_CONSTRAINT_VIOLATION, POLITICS_CATEGORIES
from config.settings import ArbitrageSettings
from core.models import MarketSnapshot, OpportunityType, RelatedMarketOpportunity
from matchers.entity_extractor import EntityExtractor
from strategies.base_detector import BaseDetector


# ============================================================================
# RULE TABLE
# ============================================================================

_PRICE_TARGET = re.compile(
    r'(?:reach|hit|above)\s*\$?(\d+(?:,\d{3})*(?:\.\d+)?)\s*(k|m|b)?',
    re.IGNORECASE,
)

_SUFFIX_MULTIPLIERS = {'k': 1e3, 'm': 1e6, 'b': 1e9}


def extract_price_target(question: str) -> Optional[float]:
    """Numeric threshold of a price-target question ("hit $100k" -> 100000.0)"""
    match = _PRICE_TARGET.search(question)
    if not match:
        return None
    value = float(match.group(1).replace(',', ''))
    suffix = (match.group(2) or '').lower()
    return value * _SUFFIX_MULTIPLIERS.get(suffix, 1.0)


def lower_target_is_higher(question1: str, question2: str) -> Optional[bool]:
    """A lower price target must be at least as likely as a higher one"""
    target1 = extract_price_target(question1)
    target2 = extract_price_target(question2)
    if target1 is None or target2 is None:
        return None
    return target1 < target2


@dataclass(frozen=True)
class RelationshipRule:
    """
    market1 matching `pattern1` should price >= market2 matching `pattern2`.

    `direction_resolver`, when set, decides that direction from the two
    questions instead (None keeps the static direction).
    """
    name: str
    pattern1: Pattern
    pattern2: Pattern
    relationship: str
    constraint: str
    market1_should_be_higher: bool = True
    direction_resolver: Optional[Callable[[str, str], Optional[bool]]] = None

    def matches(self, question1: str, question2: str) -> bool:
        return bool(self.pattern1.search(question1) and self.pattern2.search(question2))

    def resolve_direction(self, question1: str, question2: str) -> bool:
        if self.direction_resolver is not None:
            resolved = self.direction_resolver(question1, question2)
            if resolved is not None:
                return resolved
        return self.market1_should_be_higher


RELATIONSHIP_RULES: List[RelationshipRule] = [
    RelationshipRule(
        name='primary_general',
        pattern1=re.compile(r'win.*(primary|nomination)', re.IGNORECASE),
        pattern2=re.compile(r'win.*(general|election|president)', re.IGNORECASE),
        relationship='superset',
        constraint='P(win primary) >= P(win general)',
    ),
    RelationshipRule(
        name='nomination_presidency',
        pattern1=re.compile(r'(nominee|nomination)', re.IGNORECASE),
        pattern2=re.compile(r'president', re.IGNORECASE),
        relationship='superset',
        constraint='P(nomination) >= P(presidency)',
    ),
    RelationshipRule(
        name='playoffs_championship',
        pattern1=re.compile(r'make.*(playoffs|postseason)', re.IGNORECASE),
        pattern2=re.compile(r'win.*(championship|title|super bowl|world series)', re.IGNORECASE),
        relationship='superset',
        constraint='P(make playoffs) >= P(win championship)',
    ),
    RelationshipRule(
        name='division_conference',
        pattern1=re.compile(r'win.*(division)', re.IGNORECASE),
        pattern2=re.compile(r'win.*(conference)', re.IGNORECASE),
        relationship='superset',
        constraint='P(win division) >= P(win conference)',
    ),
    RelationshipRule(
        name='price_target',
        pattern1=_PRICE_TARGET,
        pattern2=_PRICE_TARGET,
        relationship='superset',
        constraint='P(reach lower target) >= P(reach higher target)',
        direction_resolver=lower_target_is_higher,
    ),
]


# ============================================================================
# DETECTOR
# ============================================================================

class RelatedMarketDetector(BaseDetector):
    """Logical-implication violations between related markets"""

    opportunity_type = OpportunityType.RELATED_MARKET

    def __init__(
        self,
        settings: ArbitrageSettings,
        rules: Optional[Sequence[RelationshipRule]] = None,
        extractor: Optional[EntityExtractor] = None,
    ):
        super().__init__(settings)
        self.rules = list(rules) if rules is not None else list(RELATIONSHIP_RULES)
        self.extractor = extractor or EntityExtractor()

    async def find_opportunities(self, markets: Sequence[MarketSnapshot]) -> List[RelatedMarketOpportunity]:
        groups = self.group_by_category(markets)
        opportunities = []

        for category_markets in groups.values():
            for market1, market2 in combinations(category_markets, 2):
                opportunity = self.analyze_pair(market1, market2)
                if opportunity:
                    opportunities.append(opportunity)

        # Politics is split over several categories; same-category pairs were
        # already compared above
        politics = [m for cat in POLITICS_CATEGORIES for m in groups.get(cat, [])]
        for market1, market2 in combinations(politics, 2):
            if market1.category == market2.category:
                continue
            opportunity = self.analyze_pair(market1, market2)
            if opportunity:
                opportunities.append(opportunity)

        return opportunities

    @staticmethod
    def group_by_category(markets: Sequence[MarketSnapshot]) -> Dict[str, List[MarketSnapshot]]:
        groups: Dict[str, List[MarketSnapshot]] = {}
        for market in markets:
            groups.setdefault(market.category or 'other', []).append(market)
        return groups

    def analyze_pair(self, market1: MarketSnapshot, market2: MarketSnapshot) -> Optional[RelatedMarketOpportunity]:
        if not (self.meets_liquidity(market1.liquidity) and self.meets_liquidity(market2.liquidity)):
            return None

        names1 = self.extractor.extract_names(market1.question)
        names2 = self.extractor.extract_names(market2.question)
        if not any(n in names2 for n in names1):
            return None

        for rule in self.rules:
            opportunity = self.check_rule(market1, market2, rule) or self.check_rule(market2, market1, rule)
            if opportunity:
                return opportunity
        return None

    def check_rule(
        self,
        market1: MarketSnapshot,
        market2: MarketSnapshot,
        rule: RelationshipRule,
    ) -> Optional[RelatedMarketOpportunity]:
        if not rule.matches(market1.question, market2.question):
            return None

        price1 = market1.yes_price or 0.0
        price2 = market2.yes_price or 0.0
        should_be_higher = rule.resolve_direction(market1.question, market2.question)

        violation = 0.0
        if should_be_higher:
            if price1 < price2:
                violation = price2 - price1
        elif price1 > price2:
            violation = price1 - price2

        if violation < MIN_CONSTRAINT_VIOLATION:
            return None

        profit_percent = self.net_profit_percent(violation * 100)
        if not self.meets_profit_threshold(profit_percent):
            return None

        confidence = self.calculate_confidence(market1, market2, violation)
        if not self.meets_confidence(confidence):
            return None

        if should_be_higher:
            cheap, cheap_price, dear, dear_price = market1, price1, market2, price2
        else:
            cheap, cheap_price, dear, dear_price = market2, price2, market1, price1

        return RelatedMarketOpportunity(
            market1_id=cheap.id,
            market1_question=cheap.question,
            market1_price=cheap_price,
            market1_liquidity=cheap.liquidity,
            market2_id=dear.id,
            market2_question=dear.question,
            market2_price=dear_price,
            market2_liquidity=dear.liquidity,
            relationship_type=rule.relationship,
            expected_constraint=rule.constraint,
            violation=violation,
            spread=violation,
            profit_percent=profit_percent,
            confidence_score=confidence,
        )

    def calculate_confidence(self, market1: MarketSnapshot, market2: MarketSnapshot, violation: float) -> float:
        # Lower base: the relationship itself may be misjudged
        confidence = 0.4

        min_liquidity = min(market1.liquidity, market2.liquidity)
        if min_liquidity >= 50_000:
            confidence += 0.20
        elif min_liquidity >= 20_000:
            confidence += 0.10

        if violation > 0.10:
            confidence += 0.15
        elif violation > 0.05:
            confidence += 0.10

        if market1.category == market2.category:
            confidence += 0.10

        return self.clamp_confidence(confidence)
