"""
Question Similarity Matcher

Decides whether two market questions describe the SAME event.

The matcher is deliberately conservative. "Team A wins the title" and
"Team B wins the title" share almost every word, yet they are mutually
exclusive alternatives, not the same event. A pair is therefore only matched
when:

1. Both questions have the same subject (who/what performs the action), or
   subjects whose significant words overlap by at least 50%
2. Proper-name overlap is at least 30% and at least one name is shared
3. The weighted similarity score is at least 0.5 (and at least the configured
   minimum similarity)

Weighted score:
    0.45 * name + 0.15 * date + 0.10 * number + 0.10 * keyword + 0.20 * word
(each term a Jaccard index; the Jaccard of two empty sets is 0)
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from config.constants import (
    NAME_OVERLAP_MIN,
    SIMILARITY_FLOOR,
    SIMILARITY_WEIGHTS,
    SUBJECT_OVERLAP_MIN,
)
from core.models import MarketSnapshot, MatchType
from matchers.entity_extractor import EntityExtractor, ExtractedEntities
from utils.logger import get_logger


logger = get_logger(__name__)


# (positive phrase, negated phrase)
NEGATION_PAIRS = [
    ('will', 'will not'),
    ('win', 'lose'),
    ('wins', 'loses'),
    ('yes', 'no'),
    ('above', 'below'),
    ('over', 'under'),
    ('more than', 'less than'),
    ('higher', 'lower'),
    ('before', 'after'),
    ('pass', 'fail'),
    ('passes', 'fails'),
    ('reach', 'not reach'),
    ('elected', 'not elected'),
]

# Ordered subject templates; first match wins
COMPETITION_PATTERNS = [
    re.compile(r'will\s+(?:the\s+)?(.+?)\s+win', re.IGNORECASE),
    re.compile(r'(.+?)\s+(?:to\s+)?win', re.IGNORECASE),
    re.compile(r'(.+?)\s+wins', re.IGNORECASE),
    re.compile(r'will\s+(?:the\s+)?(.+?)\s+be\s+elected', re.IGNORECASE),
    re.compile(r'(.+?)\s+(?:to\s+)?become', re.IGNORECASE),
    re.compile(r'will\s+(?:the\s+)?(.+?)\s+beat', re.IGNORECASE),
    re.compile(r'will\s+(?:the\s+)?(.+?)\s+defeat', re.IGNORECASE),
]

_NOT_PHRASE = re.compile(r'\bnot\s+(\w+)', re.IGNORECASE)

# Entity cache is rebuilt from scratch past this many questions
_CACHE_LIMIT = 20000


def jaccard_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B|, defined as 0.0 when both sets are empty"""
    set1, set2 = set(first), set(second)
    if not set1 and not set2:
        return 0.0
    return len(set1 & set2) / len(set1 | set2)


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf'\b{re.escape(phrase)}\b', text) is not None


@dataclass(frozen=True)
class MarketMatch:
    """Two markets judged to describe the same event"""
    market1: MarketSnapshot
    market2: MarketSnapshot
    similarity_score: float
    match_type: MatchType
    shared_names: List[str] = field(default_factory=list)
    shared_entities: List[str] = field(default_factory=list)


class QuestionSimilarityMatcher:
    """Pairwise same-event matcher with per-question entity caching"""

    def __init__(self, extractor: Optional[EntityExtractor] = None, min_similarity_score: float = 0.7):
        self.extractor = extractor or EntityExtractor()
        self.min_similarity_score = min_similarity_score
        self._entity_cache: Dict[str, ExtractedEntities] = {}
        self._subject_cache: Dict[str, Optional[str]] = {}

    # ========================================================================
    # CACHED EXTRACTION
    # ========================================================================

    def entities(self, question: str) -> ExtractedEntities:
        cached = self._entity_cache.get(question)
        if cached is None:
            if len(self._entity_cache) >= _CACHE_LIMIT:
                self.clear_cache()
            cached = self.extractor.extract(question)
            self._entity_cache[question] = cached
        return cached

    def subject(self, question: str) -> Optional[str]:
        if question not in self._subject_cache:
            self._subject_cache[question] = self.extract_subject(question)
        return self._subject_cache[question]

    @staticmethod
    def extract_subject(question: str) -> Optional[str]:
        """
        Who/what performs the action, e.g.
        "Will the Golden Knights win the Cup?" -> "golden knights"
        """
        for pattern in COMPETITION_PATTERNS:
            match = pattern.search(question)
            if match and match.group(1):
                return match.group(1).lower().strip()
        return None

    def clear_cache(self) -> None:
        self._entity_cache.clear()
        self._subject_cache.clear()

    # ========================================================================
    # MATCHING
    # ========================================================================

    def find_matches(self, markets: Sequence[MarketSnapshot]) -> List[MarketMatch]:
        """All same-event pairs at or above the configured similarity, best first"""
        matches = []
        for i in range(len(markets)):
            for j in range(i + 1, len(markets)):
                match = self.compare_markets(markets[i], markets[j])
                if match and match.similarity_score >= self.min_similarity_score:
                    matches.append(match)

        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        return matches

    def compare_markets(self, market1: MarketSnapshot, market2: MarketSnapshot) -> Optional[MarketMatch]:
        """Return a MarketMatch when both questions describe the same event"""
        subject1 = self.subject(market1.question)
        subject2 = self.subject(market2.question)

        # Different subjects are competing alternatives, not the same event
        if subject1 and subject2 and subject1 != subject2:
            overlap = jaccard_similarity(
                (w for w in subject1.split() if len(w) > 2),
                (w for w in subject2.split() if len(w) > 2),
            )
            if overlap < SUBJECT_OVERLAP_MIN:
                return None

        entities1 = self.entities(market1.question)
        entities2 = self.entities(market2.question)

        name_overlap = jaccard_similarity(entities1.names, entities2.names)
        if name_overlap < NAME_OVERLAP_MIN:
            return None

        score = self.similarity_score(market1.question, market2.question, entities1, entities2)
        if score < SIMILARITY_FLOOR:
            return None

        shared_names = [n for n in entities1.names if n in entities2.names]
        if not shared_names:
            return None
        shared_dates = [d for d in entities1.dates if d in entities2.dates]

        match_type = MatchType.INVERSE if self.is_inverse(market1.question, market2.question) else MatchType.EXACT

        return MarketMatch(
            market1=market1,
            market2=market2,
            similarity_score=score,
            match_type=match_type,
            shared_names=shared_names,
            shared_entities=shared_names + shared_dates,
        )

    def similarity_score(
        self,
        question1: str,
        question2: str,
        entities1: Optional[ExtractedEntities] = None,
        entities2: Optional[ExtractedEntities] = None,
    ) -> float:
        """Weighted Jaccard blend of names, dates, numbers, keywords and words"""
        entities1 = entities1 or self.entities(question1)
        entities2 = entities2 or self.entities(question2)

        words1 = self.extractor.normalize_question(question1).split(' ')
        words2 = self.extractor.normalize_question(question2).split(' ')

        w_name, w_date, w_number, w_keyword, w_word = SIMILARITY_WEIGHTS
        return (
            w_name * jaccard_similarity(entities1.names, entities2.names)
            + w_date * jaccard_similarity(entities1.dates, entities2.dates)
            + w_number * jaccard_similarity(entities1.numbers, entities2.numbers)
            + w_keyword * jaccard_similarity(entities1.keywords, entities2.keywords)
            + w_word * jaccard_similarity(words1, words2)
        )

    @staticmethod
    def is_inverse(question1: str, question2: str) -> bool:
        """
        True when one question is the negation of the other
        ("Will X win?" vs "Will X lose?", "above" vs "below", "not X" vs "X").
        """
        lower1 = question1.lower()
        lower2 = question2.lower()

        for positive, negative in NEGATION_PAIRS:
            has1_neg = _contains_phrase(lower1, negative)
            has2_neg = _contains_phrase(lower2, negative)
            has1_pos = _contains_phrase(lower1, positive) and not has1_neg
            has2_pos = _contains_phrase(lower2, positive) and not has2_neg

            if (has1_pos and has2_neg) or (has1_neg and has2_pos):
                return True

        negated1: Set[str] = {w.lower() for w in _NOT_PHRASE.findall(lower1)}
        negated2: Set[str] = {w.lower() for w in _NOT_PHRASE.findall(lower2)}

        for word in negated1 - negated2:
            if _contains_phrase(lower2, word):
                return True
        for word in negated2 - negated1:
            if _contains_phrase(lower1, word):
                return True

        return False
