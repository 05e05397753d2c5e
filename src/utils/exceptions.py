"""
Custom Exception Classes for the Arbitrage Engine

Provides a hierarchy of specific exceptions for the failure scenarios that are
genuinely exceptional. Modeled trading outcomes (failed legs, slippage eating
the margin, risk rejections) are NOT exceptions: they are recorded on results.

Exception Hierarchy:
├── ArbitrageBotError (Base)
│   ├── ConfigurationError
│   ├── APIError
│   │   ├── RateLimitError
│   │   ├── APITimeoutError
│   │   └── InvalidResponseError
│   ├── DetectorError
│   ├── DataValidationError
│   ├── PersistenceError
│   └── NotificationError
"""

from typing import Optional, Dict, Any


class ArbitrageBotError(Exception):
    """
    Base exception for all arbitrage engine errors.
    Enables catching all engine errors with: except ArbitrageBotError
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize engine error with structured information.

        Args:
            message: Human-readable error message
            error_code: Error code for classification (e.g., 'MISSING_LLM_API_KEY')
            details: Additional context dict
            original_error: Original exception that caused this (for error chaining)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            error_str += f" (Code: {self.error_code})"
        if self.details:
            error_str += f" | Details: {self.details}"
        return error_str


# ============================================================================
# CONFIGURATION & INITIALIZATION ERRORS
# ============================================================================

class ConfigurationError(ArbitrageBotError):
    """
    Raised when configuration is invalid or incomplete.
    Examples: LLM detection enabled without an API key, Telegram without a chat id
    Action: Fix configuration and restart
    """
    pass


# ============================================================================
# API & NETWORK ERRORS
# ============================================================================

class APIError(ArbitrageBotError):
    """
    Base exception for upstream HTTP API errors (market feed, LLM, Telegram).
    Includes HTTP status code and response data for debugging.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(message, **kwargs)


class RateLimitError(APIError):
    """
    Raised when an upstream API answers HTTP 429.
    Action: Back off and retry after the rate limit window
    """
    pass


class APITimeoutError(APIError):
    """
    Raised when an upstream request times out.
    Action: Retry with exponential backoff
    """
    pass


class InvalidResponseError(APIError):
    """
    Raised when an API response cannot be parsed or has an unexpected shape.
    Action: Log response and skip this cycle's data
    """
    pass


# ============================================================================
# DETECTION & DATA ERRORS
# ============================================================================

class DetectorError(ArbitrageBotError):
    """
    Raised when a detector cannot complete its pass.
    The detection engine contains it: the detector contributes no opportunities.
    """

    def __init__(
        self,
        message: str,
        detector_name: Optional[str] = None,
        **kwargs
    ):
        self.detector_name = detector_name
        super().__init__(message, **kwargs)


class DataValidationError(ArbitrageBotError):
    """
    Raised when market data fails validation.
    Examples: price outside (0, 1), missing identifier, negative liquidity
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(message, **kwargs)


# ============================================================================
# EXTERNAL SINK ERRORS
# ============================================================================

class PersistenceError(ArbitrageBotError):
    """
    Raised when the opportunity/execution store rejects a write.
    Best-effort sink: callers log it and keep in-memory state as is.
    """
    pass


class NotificationError(ArbitrageBotError):
    """
    Raised when a notification channel fails to deliver a message.
    Action: Log and continue; notifications never block trading state
    """
    pass
