"""LLM package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from llm.llm_client import LLMClient

__all__ = [
    'LLMClient',
    'SemanticCache',
]
