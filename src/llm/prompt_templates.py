"""
LLM Prompt Templates & Response Schema

Chain-of-thought prompts asking an OpenAI-compatible chat model to classify
the logical relationship between two prediction-market questions, plus the
strict pydantic schema its JSON reply is validated against.

parse_analysis_response() never raises: a reply that is not JSON, or JSON
that does not fit the schema, comes back as a failed ParseResult and is
treated as "no relationship" by the detector.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from core.models import ExpectedRelation, SemanticRelationship


SYSTEM_PROMPT = """You are an expert at analyzing prediction market questions to identify logical relationships and arbitrage opportunities.

Your task is to analyze pairs of market questions and determine if there is a logical dependency between them that creates probability constraints.

Types of relationships to identify:

1. SUBSET: Event A implies Event B (if A happens, B must happen)
   Example: "X wins primary" implies "X is nominated" - winning primary strongly implies getting nomination

2. SUPERSET: Event B implies Event A (if B happens, A must happen)
   Example: "X wins championship" implies "X makes playoffs" - must make playoffs to win championship

3. MUTUAL_EXCLUSION: A and B cannot both be true
   Example: "Team A wins" and "Team B wins" the same game

4. LOGICAL_BOUND: Probability constraints that must hold
   Example: P(X wins presidency) <= P(X wins nomination) - can't win presidency without nomination

5. NESTED_TARGET: Price/threshold targets where higher targets imply lower targets
   Example: "BTC reaches $150k" implies "BTC reaches $100k"

6. TEMPORAL: Time-based dependencies
   Example: "X happens by March" is implied by "X happens by January"

7. NONE: No logical relationship exists

Output your analysis in the following JSON format:
{
  "relationship_type": "subset" | "superset" | "mutual_exclusion" | "logical_bound" | "nested_target" | "temporal" | "none",
  "confidence": 0.0-1.0,
  "reasoning": "Step-by-step explanation of your analysis",
  "constraint": {
    "type": "probability_bound" | "sum_bound" | "exclusive" | null,
    "expression": "P(A) >= P(B)" or "P(A) + P(B) <= 1" or null,
    "market1_should_be": "higher" | "lower" | "equal" | null
  },
  "arbitrage_possible": true | false,
  "arbitrage_direction": {
    "buy": "market1" | "market2",
    "sell": "market1" | "market2"
  } | null
}

Be conservative - only identify relationships you are highly confident about."""


USER_PROMPT_TEMPLATE = """Analyze these two prediction market questions for logical relationships:

**Market 1:**
Question: "{market1_question}"
Current YES Price: {market1_price}% (probability)

**Market 2:**
Question: "{market2_question}"
Current YES Price: {market2_price}% (probability)

Consider:
1. Are these about the same subject/entity?
2. Is there a logical implication between them?
3. Do the current prices violate any logical constraints?
4. If constraint is violated, which direction is the arbitrage?

Provide your analysis in the specified JSON format."""


def build_user_prompt(market1_question: str, market1_price: float, market2_question: str, market2_price: float) -> str:
    """Fill the user prompt; prices are rendered as percentages with one decimal"""
    return USER_PROMPT_TEMPLATE.format(
        market1_question=market1_question,
        market1_price=f"{market1_price * 100:.1f}",
        market2_question=market2_question,
        market2_price=f"{market2_price * 100:.1f}",
    )


# ============================================================================
# RESPONSE SCHEMA
# ============================================================================

_RELATIONSHIP_VALUES = {r.value for r in SemanticRelationship}


class LLMConstraint(BaseModel):
    type: Optional[str] = None
    expression: Optional[str] = None
    market1_should_be: Optional[Literal['higher', 'lower', 'equal']] = None


class LLMArbitrageDirection(BaseModel):
    buy: Literal['market1', 'market2']
    sell: Literal['market1', 'market2']


class LLMAnalysisResponse(BaseModel):
    """Schema of the model's JSON reply"""
    relationship_type: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ''
    constraint: Optional[LLMConstraint] = None
    arbitrage_possible: bool = False
    arbitrage_direction: Optional[LLMArbitrageDirection] = None

    @field_validator('relationship_type')
    @classmethod
    def validate_relationship_type(cls, v):
        normalized = v.strip().lower()
        if normalized not in _RELATIONSHIP_VALUES:
            raise ValueError(f"Unknown relationship type: {v}")
        return normalized

    @property
    def relationship(self) -> SemanticRelationship:
        return SemanticRelationship(self.relationship_type)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one model reply"""
    ok: bool
    response: Optional[LLMAnalysisResponse] = None
    error: Optional[str] = None


_JSON_OBJECT = re.compile(r'\{[\s\S]*\}')


def parse_analysis_response(text: str) -> ParseResult:
    """
    Extract the JSON object from a model reply (tolerating markdown fences and
    surrounding prose) and validate it against LLMAnalysisResponse.
    """
    match = _JSON_OBJECT.search(text or '')
    if not match:
        return ParseResult(ok=False, error='No JSON object in response')

    try:
        response = LLMAnalysisResponse.model_validate_json(match.group(0))
    except ValidationError as e:
        return ParseResult(ok=False, error=f"Schema validation failed: {e.error_count()} error(s)")

    return ParseResult(ok=True, response=response)


# ============================================================================
# INTERNAL ANALYSIS RESULT
# ============================================================================

@dataclass(frozen=True)
class SemanticConstraint:
    type: str
    expression: str
    expected_relation: ExpectedRelation


@dataclass(frozen=True)
class SemanticAnalysisResult:
    """Cached classification of one market pair"""
    market1_id: str
    market2_id: str
    relationship: SemanticRelationship
    confidence: float
    reasoning: str
    constraint: Optional[SemanticConstraint] = None
    buy_market_id: Optional[str] = None
    sell_market_id: Optional[str] = None
    analyzed_at: float = field(default_factory=time.time)

    @property
    def is_negative(self) -> bool:
        return self.relationship == SemanticRelationship.NONE

    @classmethod
    def negative(cls, market1_id: str, market2_id: str, reasoning: str = 'No relationship detected') -> "SemanticAnalysisResult":
        return cls(
            market1_id=market1_id,
            market2_id=market2_id,
            relationship=SemanticRelationship.NONE,
            confidence=0.0,
            reasoning=reasoning,
        )


def map_expected_relation(response: LLMAnalysisResponse) -> ExpectedRelation:
    """higher -> gte, lower -> lte, equal -> eq; exclusivity wins; default gte"""
    constraint = response.constraint
    if response.relationship == SemanticRelationship.MUTUAL_EXCLUSION:
        return ExpectedRelation.EXCLUSIVE
    if constraint is None:
        return ExpectedRelation.GTE
    if (constraint.type or '').lower() == 'exclusive':
        return ExpectedRelation.EXCLUSIVE
    return {
        'higher': ExpectedRelation.GTE,
        'lower': ExpectedRelation.LTE,
        'equal': ExpectedRelation.EQ,
    }.get(constraint.market1_should_be, ExpectedRelation.GTE)


def to_analysis_result(market1_id: str, market2_id: str, response: LLMAnalysisResponse) -> SemanticAnalysisResult:
    """Convert a validated reply into the cached internal form"""
    constraint = None
    if response.constraint is not None:
        constraint = SemanticConstraint(
            type=response.constraint.type or 'probability_bound',
            expression=response.constraint.expression or '',
            expected_relation=map_expected_relation(response),
        )

    buy_id = sell_id = None
    if response.arbitrage_direction is not None:
        buy_id = market1_id if response.arbitrage_direction.buy == 'market1' else market2_id
        sell_id = market1_id if response.arbitrage_direction.sell == 'market1' else market2_id

    return SemanticAnalysisResult(
        market1_id=market1_id,
        market2_id=market2_id,
        relationship=response.relationship,
        confidence=response.confidence,
        reasoning=response.reasoning,
        constraint=constraint,
        buy_market_id=buy_id,
        sell_market_id=sell_id,
    )
