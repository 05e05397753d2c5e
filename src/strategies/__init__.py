"""Strategies package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from strategies.negrisk_detector import NegRiskDetector

__all__ = [
    'BaseDetector',
    'MultiOutcomeDetector',
    'NegRiskDetector',
    'CrossMarketDetector',
    'RelatedMarketDetector',
    'SemanticDependencyDetector',
]
