"""Config package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from config.settings import get_settings

__all__ = [
    'ArbitrageSettings',
    'get_settings',
    'reload_settings',
]
