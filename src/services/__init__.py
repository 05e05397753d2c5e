"""Services package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from services.market_feed import GammaMarketFeed

__all__ = [
    'StaticMarketFeed',
    'GammaMarketFeed',
    'InMemoryRepository',
    'JsonlRepository',
    'LogNotifier',
    'TelegramNotifier',
    'NullResolutionSource',
]
