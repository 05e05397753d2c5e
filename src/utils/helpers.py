"""
Validators and Helper Utilities for the Arbitrage Engine

Provides:
- Market data validation (probabilities, liquidity)
- Bounded arithmetic (clamping, safe division)
- UTC day-boundary helpers for daily risk counters
- Async retry decorator for upstream calls

Validators raise DataValidationError; arithmetic helpers never raise.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Optional

from utils.logger import get_logger
from utils.exceptions import DataValidationError
from config.constants import MAX_BACKOFF_DELAY


logger = get_logger(__name__)


# ============================================================================
# 1. MARKET DATA VALIDATION
# ============================================================================

def validate_probability(price: Any, field: str = "price") -> float:
    """
    Validate that a quoted price is a probability in [0, 1].

    Args:
        price: Price to validate
        field: Field name for the error context

    Returns:
        The price as float

    Raises:
        DataValidationError: If price is not numeric or outside [0, 1]
    """
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise DataValidationError(
            f"{field} must be numeric, got {type(price).__name__}",
            field=field,
            value=price
        )

    if not (0.0 <= price <= 1.0):
        raise DataValidationError(
            f"{field} must be between 0 and 1, got {price}",
            field=field,
            value=price,
            details={'valid_range': '[0.0, 1.0]'}
        )

    return float(price)


def validate_liquidity(liquidity: Any, field: str = "liquidity") -> float:
    """
    Validate that a liquidity figure is a non-negative number.

    Raises:
        DataValidationError: If liquidity is negative or not numeric
    """
    if isinstance(liquidity, bool) or not isinstance(liquidity, (int, float)):
        raise DataValidationError(
            f"{field} must be numeric, got {type(liquidity).__name__}",
            field=field,
            value=liquidity
        )
    if liquidity < 0:
        raise DataValidationError(f"{field} cannot be negative: {liquidity}", field=field, value=liquidity)
    return float(liquidity)


def parse_float(value: Any, default: float = 0.0) -> float:
    """Parse an API number that may arrive as a string; fall back to default."""
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ============================================================================
# 2. BOUNDED ARITHMETIC
# ============================================================================

def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning default when the denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


# ============================================================================
# 3. UTC DAY BOUNDARIES
# ============================================================================

def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    """
    Return the next UTC midnight strictly after `now`.

    Args:
        now: Reference time (aware or naive-UTC). Defaults to the current time.
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    current = current.astimezone(timezone.utc)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


# ============================================================================
# 4. ASYNC RETRY
# ============================================================================

def async_retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0):
    """
    Decorator for async functions with exponential backoff retry logic.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (seconds)

    Returns:
        Decorated async function with retry logic
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = base_delay
            last_error = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    last_error = e
                    if attempt < max_retries - 1:
                        logger.warning(
                            f"Attempt {attempt + 1} failed, retrying in {delay}s",
                            extra={
                                'function': func.__name__,
                                'attempt': attempt + 1,
                                'max_retries': max_retries,
                                'error': str(e)
                            }
                        )
                        await asyncio.sleep(delay)
                        delay = min(delay * 2, MAX_BACKOFF_DELAY)

            logger.error(
                f"Function {func.__name__} failed after {max_retries} attempts",
                exc_info=last_error,
                extra={'function': func.__name__, 'attempts': max_retries}
            )
            raise last_error

        return wrapper
    return decorator
