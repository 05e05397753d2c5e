"""
Market & Opportunity Data Model

MarketSnapshot
    Immutable per-cycle view of one tradable instrument, supplied by the feed.

Opportunity (tagged sum type)
    One discriminant field, `opportunity_type`, and one dataclass per variant:

        OpportunityType.MULTI_OUTCOME        -> MultiOutcomeOpportunity
        OpportunityType.NEGRISK              -> NegRiskOpportunity
        OpportunityType.CROSS_MARKET         -> CrossMarketOpportunity
        OpportunityType.RELATED_MARKET       -> RelatedMarketOpportunity
        OpportunityType.SEMANTIC_DEPENDENCY  -> SemanticDependencyOpportunity

    Pairwise variants share the second-market payload through
    PairwiseOpportunity. Helpers that branch on the variant (dedup_key,
    legs_liquidity, recommended_action) cover every tag and raise on an
    unknown one.

TrackedOpportunity
    Lifecycle bookkeeping the detection engine keeps per canonical key.
"""

import json
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from config.constants import SPREAD_HISTORY_SIZE
from utils.helpers import parse_float


# ============================================================================
# ENUMS
# ============================================================================

class OpportunityType(Enum):
    """Discriminant of the opportunity sum type"""
    MULTI_OUTCOME = "multi_outcome"
    NEGRISK = "negrisk"
    CROSS_MARKET = "cross_market"
    RELATED_MARKET = "related_market"
    SEMANTIC_DEPENDENCY = "semantic_dependency"


class OpportunityStatus(Enum):
    """Lifecycle status of an opportunity"""
    ACTIVE = "active"
    EXECUTED = "executed"
    EXPIRED = "expired"
    INVALID = "invalid"


class Outcome(Enum):
    """Binary outcome token"""
    YES = "YES"
    NO = "NO"


class SpreadDirection(Enum):
    """YES+NO sum relative to 1.0"""
    OVERPRICED = "overpriced"
    UNDERPRICED = "underpriced"


class NegRiskDirection(Enum):
    """Rebalancing side for an N-way group"""
    LONG_REBALANCING = "long_rebalancing"    # sum < 1: buy every YES
    SHORT_REBALANCING = "short_rebalancing"  # sum > 1: buy every NO


class MatchType(Enum):
    """How two same-event questions relate"""
    EXACT = "exact"      # YES1 should equal YES2
    INVERSE = "inverse"  # YES1 should equal NO2


class SemanticRelationship(Enum):
    """Relationship classes the inference service may return"""
    SUBSET = "subset"
    SUPERSET = "superset"
    MUTUAL_EXCLUSION = "mutual_exclusion"
    LOGICAL_BOUND = "logical_bound"
    NESTED_TARGET = "nested_target"
    TEMPORAL = "temporal"
    NONE = "none"


class ExpectedRelation(Enum):
    """Expected probability relation of market1 versus market2"""
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    EXCLUSIVE = "exclusive"


class TradeSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


# ============================================================================
# MARKET SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class MarketSnapshot:
    """
    Immutable view of one prediction market for a single detection cycle.

    `prices` are per-outcome probabilities aligned with `outcomes`. When the
    outcome labels are the usual Yes/No pair the YES/NO prices are resolved by
    label; otherwise the feed convention applies (index 1 = YES, index 0 = NO).
    """
    id: str
    question: str
    prices: Tuple[float, ...]
    liquidity: float
    volume: float = 0.0
    category: str = "other"
    outcomes: Tuple[str, ...] = ("No", "Yes")
    created_at: float = field(default_factory=time.time)
    end_date: Optional[float] = None
    neg_risk: Optional[bool] = None
    neg_risk_market_id: Optional[str] = None
    event_slug: Optional[str] = None
    condition_id: Optional[str] = None

    def _index_of(self, label: str) -> Optional[int]:
        lowered = [o.strip().lower() for o in self.outcomes]
        if label in lowered:
            idx = lowered.index(label)
            if idx < len(self.prices):
                return idx
        return None

    @property
    def yes_price(self) -> Optional[float]:
        idx = self._index_of('yes')
        if idx is None:
            idx = 1 if len(self.prices) > 1 else (0 if self.prices else None)
        return self.prices[idx] if idx is not None else None

    @property
    def no_price(self) -> Optional[float]:
        idx = self._index_of('no')
        if idx is None:
            idx = 0 if len(self.prices) > 1 else None
        return self.prices[idx] if idx is not None else None

    @property
    def group_id(self) -> Optional[str]:
        """Event/group identifier clustering N-way coherent outcomes"""
        return self.neg_risk_market_id or self.event_slug

    def days_until_close(self, now: Optional[float] = None) -> Optional[float]:
        if self.end_date is None:
            return None
        return (self.end_date - (now if now is not None else time.time())) / 86400.0

    @classmethod
    def from_gamma(cls, payload: Dict[str, Any]) -> "MarketSnapshot":
        """
        Build a snapshot from a Gamma API market record.

        Gamma encodes `outcomes` and `outcomePrices` as JSON strings and
        numbers as strings; missing prices default to an uninformative 0.5/0.5.
        """
        outcomes = _decode_json_list(payload.get('outcomes')) or ["No", "Yes"]
        raw_prices = _decode_json_list(payload.get('outcomePrices'))
        prices = tuple(parse_float(p, 0.5) for p in raw_prices) if raw_prices else (0.5, 0.5)

        tags = payload.get('tags') or []
        category = None
        if tags:
            first = tags[0]
            category = first.get('label') if isinstance(first, dict) else str(first)
        category = (category or payload.get('category') or 'other').lower()

        events = payload.get('events') or []
        event_slug = payload.get('eventSlug') or (events[0].get('slug') if events and isinstance(events[0], dict) else None)

        return cls(
            id=str(payload.get('conditionId') or payload.get('condition_id') or payload.get('id')),
            question=payload.get('question') or 'Unknown Market',
            prices=prices,
            liquidity=parse_float(payload.get('liquidity')),
            volume=parse_float(payload.get('volume')),
            category=category,
            outcomes=tuple(str(o) for o in outcomes),
            created_at=_parse_iso_timestamp(payload.get('createdAt') or payload.get('created_at')) or time.time(),
            end_date=_parse_iso_timestamp(payload.get('endDate') or payload.get('end_date_iso')),
            neg_risk=payload.get('negRisk'),
            neg_risk_market_id=payload.get('negRiskMarketID') or payload.get('negRiskMarketId'),
            event_slug=event_slug,
            condition_id=payload.get('conditionId') or payload.get('condition_id'),
        )


def _decode_json_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def _parse_iso_timestamp(value: Any) -> Optional[float]:
    from datetime import datetime

    if not value:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).timestamp()
    except ValueError:
        return None


# ============================================================================
# OPPORTUNITY VARIANTS
# ============================================================================

@dataclass(kw_only=True)
class Opportunity:
    """Fields shared by every opportunity variant"""
    opportunity_type: OpportunityType
    market1_id: str
    market1_question: str
    market1_price: float
    market1_outcome: Outcome
    market1_liquidity: float
    spread: float
    profit_percent: float
    confidence_score: float
    status: OpportunityStatus = OpportunityStatus.ACTIVE
    detected_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None
    id: Optional[str] = None

    def dedup_key(self) -> str:
        """
        Canonical identity across cycles.

        Single-market variants key on the primary market within their own
        type, so a negrisk group whose primary leg also carries a YES+NO spread
        keeps both; pairwise variants on the type plus both market ids in
        sorted order, so a pair whose cheap side flips between cycles keeps the
        same key.
        """
        if self.opportunity_type == OpportunityType.MULTI_OUTCOME:
            return f"mo_{self.market1_id}"
        if self.opportunity_type == OpportunityType.NEGRISK:
            return f"negrisk_{self.market1_id}"
        if isinstance(self, PairwiseOpportunity):
            first, second = sorted((self.market1_id, self.market2_id))
            return f"{self.opportunity_type.value}_{first}_{second}"
        raise ValueError(f"Unhandled opportunity type: {self.opportunity_type}")

    def legs_liquidity(self) -> float:
        """Minimum liquidity across every leg of the trade"""
        if isinstance(self, NegRiskOpportunity):
            return self.min_condition_liquidity
        if isinstance(self, PairwiseOpportunity):
            return min(self.market1_liquidity, self.market2_liquidity)
        if self.opportunity_type == OpportunityType.MULTI_OUTCOME:
            return self.market1_liquidity
        raise ValueError(f"Unhandled opportunity type: {self.opportunity_type}")

    @property
    def is_pairwise(self) -> bool:
        return isinstance(self, PairwiseOpportunity)

    def recommended_action(self) -> Dict[str, Any]:
        raise NotImplementedError

    def summary(self) -> str:
        return (
            f"[{self.opportunity_type.value}] {self.market1_question[:60]} | "
            f"profit {self.profit_percent:.2f}% | confidence {self.confidence_score:.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict with enum values flattened"""
        return _jsonable(asdict(self))


@dataclass(kw_only=True)
class MultiOutcomeOpportunity(Opportunity):
    """Binary market whose YES + NO prices do not sum to 1"""
    opportunity_type: OpportunityType = OpportunityType.MULTI_OUTCOME
    market1_outcome: Outcome = Outcome.YES
    yes_price: float
    no_price: float
    price_sum: float
    direction: SpreadDirection

    def recommended_action(self) -> Dict[str, Any]:
        side = TradeSide.SELL if self.direction == SpreadDirection.OVERPRICED else TradeSide.BUY
        relation = '>' if self.direction == SpreadDirection.OVERPRICED else '<'
        return {
            'yes_side': side.value,
            'no_side': side.value,
            'description': (
                f"Prices sum to {self.price_sum * 100:.2f}% ({relation}100%). "
                f"{side.value} both YES and NO to lock in the spread."
            ),
        }


@dataclass(frozen=True)
class NegRiskCondition:
    """One leg of an N-way coherent group"""
    market_id: str
    question: str
    yes_price: float
    no_price: float
    liquidity: float


@dataclass(kw_only=True)
class NegRiskOpportunity(Opportunity):
    """N-way group whose YES prices do not sum to 1"""
    opportunity_type: OpportunityType = OpportunityType.NEGRISK
    market1_outcome: Outcome = Outcome.YES
    event_id: str
    event_title: str
    conditions: List[NegRiskCondition]
    total_yes_price_sum: float
    direction: NegRiskDirection
    min_condition_liquidity: float

    @property
    def condition_count(self) -> int:
        return len(self.conditions)

    @property
    def action_strategy(self) -> str:
        return 'buy_all_yes' if self.direction == NegRiskDirection.LONG_REBALANCING else 'buy_all_no'

    def recommended_action(self) -> Dict[str, Any]:
        outcome = Outcome.YES if self.direction == NegRiskDirection.LONG_REBALANCING else Outcome.NO
        edge = abs(1.0 - self.total_yes_price_sum) * 100
        return {
            'strategy': self.action_strategy,
            'actions': [
                {'market_id': c.market_id, 'side': TradeSide.BUY.value, 'outcome': outcome.value}
                for c in self.conditions
            ],
            'description': (
                f"Sum of YES prices = {self.total_yes_price_sum * 100:.2f}%. "
                f"BUY all {self.condition_count} {outcome.value} tokens. Gross edge = {edge:.2f}%"
            ),
        }

    def summary(self) -> str:
        return (
            f"[negrisk] {self.event_title[:60]} ({self.condition_count} outcomes, "
            f"sum {self.total_yes_price_sum:.3f}, {self.direction.value}) | "
            f"profit {self.profit_percent:.2f}% | confidence {self.confidence_score:.2f}"
        )


@dataclass(kw_only=True)
class PairwiseOpportunity(Opportunity):
    """Two-market opportunity: buy market1, sell market2"""
    market2_id: str
    market2_question: str
    market2_price: float
    market2_outcome: Outcome
    market2_liquidity: float

    def recommended_action(self) -> Dict[str, Any]:
        return {
            'action1': {'side': TradeSide.BUY.value, 'market': self.market1_id, 'outcome': self.market1_outcome.value},
            'action2': {'side': TradeSide.SELL.value, 'market': self.market2_id, 'outcome': self.market2_outcome.value},
            'description': (
                f"Buy {self.market1_outcome.value} on market 1 @ {self.market1_price * 100:.1f}%, "
                f"Sell {self.market2_outcome.value} on market 2 @ {self.market2_price * 100:.1f}%"
            ),
        }

    def summary(self) -> str:
        return (
            f"[{self.opportunity_type.value}] {self.market1_question[:45]} <> {self.market2_question[:45]} | "
            f"profit {self.profit_percent:.2f}% | confidence {self.confidence_score:.2f}"
        )


@dataclass(kw_only=True)
class CrossMarketOpportunity(PairwiseOpportunity):
    """Same event quoted at different prices in two markets"""
    opportunity_type: OpportunityType = OpportunityType.CROSS_MARKET
    match_type: MatchType
    similarity_score: float
    shared_entities: List[str] = field(default_factory=list)


@dataclass(kw_only=True)
class RelatedMarketOpportunity(PairwiseOpportunity):
    """Rule-based implication violated by current prices"""
    opportunity_type: OpportunityType = OpportunityType.RELATED_MARKET
    market1_outcome: Outcome = Outcome.YES
    market2_outcome: Outcome = Outcome.YES
    relationship_type: str
    expected_constraint: str
    violation: float

    def recommended_action(self) -> Dict[str, Any]:
        action = super().recommended_action()
        action['description'] = (
            f"Constraint violation: {self.expected_constraint}. "
            f"Buy underpriced market, sell overpriced market."
        )
        return action


@dataclass(kw_only=True)
class SemanticDependencyOpportunity(PairwiseOpportunity):
    """Model-inferred dependency violated by current prices"""
    opportunity_type: OpportunityType = OpportunityType.SEMANTIC_DEPENDENCY
    market1_outcome: Outcome = Outcome.YES
    market2_outcome: Outcome = Outcome.YES
    semantic_relationship: SemanticRelationship
    constraint_expression: str
    expected_relation: ExpectedRelation
    constraint_violation: float
    llm_confidence: float
    llm_reasoning: str

    @property
    def legacy_relationship(self) -> str:
        """Coarse relationship label shared with the rule-based detector"""
        if self.semantic_relationship == SemanticRelationship.SUPERSET:
            return 'superset'
        if self.semantic_relationship == SemanticRelationship.MUTUAL_EXCLUSION:
            return 'mutex'
        return 'subset'

    def recommended_action(self) -> Dict[str, Any]:
        action = super().recommended_action()
        action['description'] = (
            f"Semantic constraint violation: {self.constraint_expression}. "
            f"Reasoning: {self.llm_reasoning[:200]}"
        )
        return action


# ============================================================================
# TRACKING
# ============================================================================

@dataclass
class SpreadSample:
    timestamp: float
    spread: float


@dataclass
class TrackedOpportunity:
    """Opportunity plus cross-cycle lifecycle bookkeeping"""
    opportunity: Opportunity
    first_seen_at: float
    last_seen_at: float
    seen_count: int = 1
    spread_history: Deque[SpreadSample] = field(
        default_factory=lambda: deque(maxlen=SPREAD_HISTORY_SIZE)
    )
    executed: bool = False

    @property
    def key(self) -> str:
        return self.opportunity.dedup_key()

    def record_sighting(self, opportunity: Opportunity, now: float) -> None:
        """Refresh with the latest detection of the same key"""
        if opportunity.id is None:
            opportunity.id = self.opportunity.id
        self.opportunity = opportunity
        self.last_seen_at = now
        self.seen_count += 1
        self.spread_history.append(SpreadSample(timestamp=now, spread=opportunity.spread))


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, deque)):
        return [_jsonable(v) for v in value]
    return value
