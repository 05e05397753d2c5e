"""Core package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from core.detection_engine import DetectionEngine

__all__ = [
    'DetectionEngine',
    'RiskManager',
    'SlippageModel',
    'PaperTradingExecutor',
    'ExecutionPipeline',
]
