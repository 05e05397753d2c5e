"""Matchers package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from matchers.entity_extractor import EntityExtractor

__all__ = [
    'EntityExtractor',
    'QuestionSimilarityMatcher',
]
