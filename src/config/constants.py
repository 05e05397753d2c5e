"""
Configuration Constants for the Prediction-Market Arbitrage Engine

This module centralizes the fixed model parameters of the detection engine and
the paper-execution simulator. Tunable operating parameters (thresholds, risk
limits, LLM provider settings) live in config/settings.py and can be overridden
through the environment; the values here are the modeling assumptions the
detectors and the simulator are calibrated against.

Key Principles:
- Single source of truth for model constants
- All constants are Final (immutable)
- Logging locations overridable via environment variables
"""

from typing import Final, List, Tuple
import os


# ============================================================================
# 1. FEE MODEL
# ============================================================================
# Every detector quotes profit NET of a fixed round-trip fee assumption.
# Polymarket taker fees land around 1% round trip for a two-sided position.
# ============================================================================

ROUND_TRIP_FEE_PERCENT: Final[float] = 1.0  # 1.0% subtracted from gross profit%

# Flat fee charged on a simulated fill (fraction of position size)
SIMULATED_FEE_RATE: Final[float] = 0.01


# ============================================================================
# 2. DETECTOR MODEL PARAMETERS
# ============================================================================

# NegRisk requires at least three mutually exclusive, exhaustive outcomes.
# Binary markets are handled by the multi-outcome spread detector.
NEGRISK_MIN_CONDITIONS: Final[int] = 3

# Legs of a NegRisk group below this liquidity are considered thin
NEGRISK_LOW_LIQUIDITY_USD: Final[float] = 5000.0

# Fallback YES price for a NegRisk leg with no usable quote
NEGRISK_DEFAULT_YES_PRICE: Final[float] = 0.5

# Event titles fall back to the first question truncated to this length
EVENT_TITLE_MAX_CHARS: Final[int] = 50

# Relationship-based detectors demand a larger mispricing than pure coherence
# detectors because the relationship itself may be misjudged.
MIN_CONSTRAINT_VIOLATION: Final[float] = 0.015  # 1.5 percentage points

# Cross-market price validity band (exclusive)
CROSS_MARKET_MIN_PRICE: Final[float] = 0.01
CROSS_MARKET_MAX_PRICE: Final[float] = 0.99

# Similarity gates
SUBJECT_OVERLAP_MIN: Final[float] = 0.5   # subject word overlap below this -> different event
NAME_OVERLAP_MIN: Final[float] = 0.3      # name Jaccard below this -> unrelated
SIMILARITY_FLOOR: Final[float] = 0.5      # weighted similarity floor

# Weighted similarity: name, date, number, keyword, word
SIMILARITY_WEIGHTS: Final[Tuple[float, float, float, float, float]] = (0.45, 0.15, 0.10, 0.10, 0.20)

# Categories compared against each other by the related-market detector
POLITICS_CATEGORIES: Final[List[str]] = ['politics', 'elections', 'us politics']

# Semantic detector: liquidity at which both legs earn the liquidity bonus
SEMANTIC_LIQUIDITY_BONUS_USD: Final[float] = 20000.0


# ============================================================================
# 3. OPPORTUNITY TRACKING
# ============================================================================

# Tracked opportunities unseen for longer than this are expired
OPPORTUNITY_EXPIRY_SEC: Final[float] = 5 * 60

# Number of spread samples kept per tracked opportunity
SPREAD_HISTORY_SIZE: Final[int] = 10

# A re-detected opportunity whose profit moved by more than this many
# percentage points is re-emitted as new
SIGNIFICANT_PROFIT_CHANGE_PCT: Final[float] = 0.5


# ============================================================================
# 4. RISK MODEL
# ============================================================================

# Minimum profit% left after the rough slippage haircut
MIN_PROFIT_AFTER_SLIPPAGE_PCT: Final[float] = 0.1

# Rough slippage haircut = (size / liquidity) * factor * 100 (percent)
ROUGH_SLIPPAGE_FACTOR: Final[float] = 0.5


# ============================================================================
# 5. SLIPPAGE MODEL
# ============================================================================

MIN_EXECUTION_PRICE: Final[float] = 0.01
MAX_EXECUTION_PRICE: Final[float] = 0.99

# Buying above / selling below these probabilities adds an extremity term
EXTREME_BUY_PRICE: Final[float] = 0.9
EXTREME_SELL_PRICE: Final[float] = 0.1
EXTREMITY_BPS_PER_UNIT: Final[float] = 100.0  # caps at 10 bps

# Estimate confidence floor and decay slope against size/liquidity ratio
SLIPPAGE_MIN_CONFIDENCE: Final[float] = 0.3
SLIPPAGE_CONFIDENCE_DECAY: Final[float] = 2.0

# Uniform noise band applied to a bps estimate (+/-20%)
SLIPPAGE_NOISE_BAND: Final[float] = 0.2


# ============================================================================
# 6. KELLY SIZING & EXECUTION FAILURE MODEL
# ============================================================================

KELLY_MIN_WIN_PROBABILITY: Final[float] = 0.5
KELLY_MAX_WIN_PROBABILITY: Final[float] = 0.95
KELLY_ASSUMED_LOSS: Final[float] = 0.02      # 2% loss when an arb fails
KELLY_FRACTION_MULTIPLIER: Final[float] = 0.5  # half Kelly
KELLY_MIN_FRACTION: Final[float] = 0.01
KELLY_MAX_FRACTION: Final[float] = 0.25

MAX_BANKROLL_FRACTION_PER_TRADE: Final[float] = 0.25
MIN_TRADE_SIZE_USD: Final[float] = 5.0
MIN_BANKROLL_USD: Final[float] = 10.0

# Leg-1 failure returns capital minus this penalty (fraction of size)
FAILED_ORDER_PENALTY_RATE: Final[float] = 0.001

# Leg-2 failure leaves a stuck position unwound at this loss (fraction of size)
UNWIND_LOSS_RATE: Final[float] = 0.02

# Partial fills realize a uniform fraction of the position in [MIN, 1.0]
PARTIAL_FILL_MIN_RATIO: Final[float] = 0.5

# Annualization factor applied to the per-trade Sharpe ratio
SHARPE_ANNUALIZATION_DAYS: Final[int] = 252


# ============================================================================
# 7. LLM REQUESTS
# ============================================================================

LLM_REQUEST_TIMEOUT_SEC: Final[float] = 30.0
LLM_RATE_WINDOW_SEC: Final[float] = 60.0

# Fraction of cache entries evicted (least recently used first) at capacity
CACHE_EVICTION_FRACTION: Final[float] = 0.1


# ============================================================================
# 8. MARKET FEED
# ============================================================================

GAMMA_API_URL: Final[str] = os.getenv('POLYMARKET_GAMMA_API', 'https://gamma-api.polymarket.com')
API_TIMEOUT_SEC: Final[int] = 30
MAX_RETRIES: Final[int] = 3
RETRY_BASE_DELAY: Final[float] = 1.0
MAX_BACKOFF_DELAY: Final[float] = 60.0

# Gamma API: 300 req/10s public limit, stay well below it
GAMMA_READ_RATE_PER_SEC: Final[float] = 5.0
GAMMA_READ_BURST: Final[float] = 10.0


# ============================================================================
# 9. LOGGING CONFIGURATION
# ============================================================================

# Logging level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'
LOG_LEVEL: Final[str] = os.getenv('LOG_LEVEL', 'INFO')

# Path to log file (ensure write permissions)
LOG_FILE_PATH: Final[str] = os.getenv('LOG_FILE_PATH', 'logs/arbitrage_engine.log')

# Maximum log file size in bytes (50 MB - rotate after this size)
MAX_LOG_FILE_SIZE: Final[int] = 50 * 1024 * 1024

# Number of backup log files to keep
LOG_BACKUP_COUNT: Final[int] = 10

# Enable JSON structured logging for the file handler
STRUCTURED_LOGGING: Final[bool] = os.getenv('STRUCTURED_LOGGING', 'true').lower() == 'true'


# ============================================================================
# 10. SHUTDOWN
# ============================================================================

# Upper bound on waiting for an in-flight simulated execution during shutdown
GRACEFUL_SHUTDOWN_TIMEOUT_SEC: Final[float] = 30.0

# Consecutive failed detection cycles before the risk manager's emergency stop
MAX_CONSECUTIVE_CYCLE_ERRORS: Final[int] = 10
