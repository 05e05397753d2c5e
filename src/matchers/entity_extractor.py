"""
Entity Extraction for Market Questions

Pulls four entity classes out of a question's text:
- names:    capitalized words/phrases and 2-5 letter abbreviations (NFL, GOP)
- dates:    month-day dates, years, numeric dates, quarters, "end of ..."
- numbers:  plain numbers, currency, percentages, k/m/b suffixes
- keywords: prediction-market vocabulary (win, election, above, btc, ...)

All entities are lowercased and deduplicated with first-seen order preserved.
"""

import re
from dataclasses import dataclass, field
from typing import FrozenSet, List


STOP_WORDS: FrozenSet[str] = frozenset([
    'a', 'an', 'the', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'shall', 'can', 'this', 'that', 'these',
    'those', 'it', 'its', 'they', 'their', 'there', 'here', 'what', 'which',
    'who', 'whom', 'when', 'where', 'why', 'how', 'if', 'then', 'else',
    'than', 'so', 'no', 'not', 'only', 'own', 'same', 'too', 'very',
])

MARKET_KEYWORDS: FrozenSet[str] = frozenset([
    'win', 'wins', 'won', 'lose', 'loses', 'lost', 'defeat', 'beats', 'beat',
    'elected', 'election', 'vote', 'votes', 'voting', 'nominee', 'nomination',
    'primary', 'general', 'president', 'presidential', 'governor', 'senate',
    'congress', 'house', 'democratic', 'republican', 'democrat', 'gop',
    'championship', 'champion', 'playoffs', 'finals', 'super', 'bowl',
    'world', 'series', 'cup', 'title', 'mvp', 'award', 'winner',
    'above', 'below', 'over', 'under', 'more', 'less', 'higher', 'lower',
    'reach', 'reaches', 'hit', 'hits', 'exceed', 'exceeds', 'pass', 'passes',
    'before', 'after', 'by', 'until', 'during',
    'yes', 'no', 'true', 'false',
    'bitcoin', 'btc', 'ethereum', 'eth', 'crypto', 'price',
])

_MONTHS = (
    r'jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|jul(?:y)?|'
    r'aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?'
)

NAME_PATTERN = re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b')
ABBREVIATION_PATTERN = re.compile(r'\b[A-Z]{2,5}\b')

FULL_DATE_PATTERN = re.compile(
    rf'\b(?:{_MONTHS})\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?\b', re.IGNORECASE
)
YEAR_PATTERN = re.compile(r'\b20\d{2}\b')
NUMERIC_DATE_PATTERN = re.compile(r'\b\d{1,2}/\d{1,2}/\d{2,4}\b|\b\d{4}-\d{2}-\d{2}\b')
QUARTER_PATTERN = re.compile(r'\bQ[1-4]\s*\d{4}\b', re.IGNORECASE)
END_OF_PATTERN = re.compile(rf'\bend\s+of\s+(?:{_MONTHS}|\d{{4}})\b', re.IGNORECASE)

NUMBER_PATTERN = re.compile(r'\$?\d+(?:,\d{3})*(?:\.\d+)?(?:%|k|m|b|K|M|B)?\b', re.IGNORECASE)

_NON_WORD = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')


@dataclass(frozen=True)
class ExtractedEntities:
    names: List[str] = field(default_factory=list)
    dates: List[str] = field(default_factory=list)
    numbers: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


class EntityExtractor:
    """Stateless extractor; one instance can be shared by every detector"""

    def extract(self, question: str) -> ExtractedEntities:
        return ExtractedEntities(
            names=self.extract_names(question),
            dates=self.extract_dates(question),
            numbers=self.extract_numbers(question),
            keywords=self.extract_keywords(question),
        )

    def extract_names(self, text: str) -> List[str]:
        """Capitalized phrases (minus stop words / market vocabulary) plus abbreviations"""
        names = []
        for match in NAME_PATTERN.findall(text):
            normalized = match.lower()
            if normalized not in STOP_WORDS and normalized not in MARKET_KEYWORDS:
                names.append(normalized)

        names.extend(m.lower() for m in ABBREVIATION_PATTERN.findall(text))
        return _dedupe(names)

    def extract_dates(self, text: str) -> List[str]:
        dates = [d.lower() for d in FULL_DATE_PATTERN.findall(text)]
        dates.extend(YEAR_PATTERN.findall(text))
        dates.extend(NUMERIC_DATE_PATTERN.findall(text))
        dates.extend(q.lower() for q in QUARTER_PATTERN.findall(text))
        dates.extend(d.lower() for d in END_OF_PATTERN.findall(text))
        return _dedupe(dates)

    def extract_numbers(self, text: str) -> List[str]:
        """Numbers normalized without '$' and ',' and with lowercase units"""
        numbers = [m.replace('$', '').replace(',', '').lower() for m in NUMBER_PATTERN.findall(text)]
        return _dedupe(numbers)

    def extract_keywords(self, text: str) -> List[str]:
        words = _NON_WORD.sub(' ', text.lower()).split()
        return _dedupe([w for w in words if len(w) > 2 and w in MARKET_KEYWORDS])

    @staticmethod
    def normalize_question(question: str) -> str:
        """Lowercase, punctuation to spaces, collapsed whitespace"""
        return _WHITESPACE.sub(' ', _NON_WORD.sub(' ', question.lower())).strip()
