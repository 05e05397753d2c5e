"""
Dynamic Configuration for the Arbitrage Engine

pydantic-settings based configuration. Every operating parameter of the
detection engine, the risk manager, the paper executor and the external
collaborators can be overridden through the environment or a .env file.

Features:
- Environment variable overrides for all parameters
- Type validation and coercion with bounds
- Startup prerequisite validation (credentials for enabled integrations)
- Reload support for runtime parameter tuning

Usage:
    from config.settings import get_settings

    settings = get_settings()
    threshold = settings.min_profit_threshold

    # Override via environment:
    # export MIN_PROFIT_THRESHOLD=1.0
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

from utils.exceptions import ConfigurationError


class ArbitrageSettings(BaseSettings):
    """
    Arbitrage Engine Configuration

    All parameters can be overridden via environment variables.
    Example: MIN_PROFIT_THRESHOLD=1.0 python src/main.py
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ============================================================================
    # DETECTION THRESHOLDS
    # ============================================================================

    execution_mode: str = Field(
        default='simulation',
        description="Execution mode. Only 'simulation' (paper trading) is supported"
    )

    min_profit_threshold: float = Field(
        default=0.5,
        description="Minimum net-of-fee profit percentage for an opportunity (0.5 = 0.5%)",
        ge=0.0,
        le=100.0
    )

    min_confidence: float = Field(
        default=0.7,
        description="Minimum confidence score for an opportunity",
        ge=0.0,
        le=1.0
    )

    detection_interval_sec: float = Field(
        default=10.0,
        description="Seconds between detection cycles",
        ge=0.1,
        le=3600.0
    )

    min_similarity_score: float = Field(
        default=0.7,
        description="Minimum weighted question similarity for cross-market pairs",
        ge=0.0,
        le=1.0
    )

    # ============================================================================
    # DETECTOR ENABLE FLAGS
    # ============================================================================

    enable_multi_outcome: bool = Field(default=True, description="Enable YES+NO spread detector")
    enable_negrisk: bool = Field(default=True, description="Enable N-way NegRisk coherence detector")
    enable_cross_market: bool = Field(default=True, description="Enable same-event cross-market detector")
    enable_related_market: bool = Field(default=True, description="Enable rule-based related-market detector")
    enable_semantic_dependency: bool = Field(
        default=False,
        description="Enable LLM-backed semantic dependency detector"
    )

    # ============================================================================
    # RISK LIMITS
    # ============================================================================

    max_position_size_usd: float = Field(
        default=1000.0,
        description="Maximum net position per market (USD)",
        gt=0.0
    )

    max_total_exposure_usd: float = Field(
        default=5000.0,
        description="Maximum aggregate exposure across all markets (USD)",
        gt=0.0
    )

    max_daily_loss_usd: float = Field(
        default=500.0,
        description="Daily loss floor; trading halts once breached until UTC midnight",
        gt=0.0
    )

    min_liquidity_usd: float = Field(
        default=5000.0,
        description="Minimum liquidity per leg, used by detectors and the risk manager",
        ge=0.0
    )

    trade_cooldown_sec: float = Field(
        default=5.0,
        description="Minimum seconds between simulated trades",
        ge=0.0
    )

    # ============================================================================
    # PAPER EXECUTION
    # ============================================================================

    sim_starting_balance: float = Field(
        default=10000.0,
        description="Starting paper bankroll (USD)",
        gt=0.0
    )

    sim_base_slippage_bps: float = Field(
        default=10.0,
        description="Base slippage applied to every simulated fill (bps)",
        ge=0.0,
        le=1000.0
    )

    sim_liquidity_impact: float = Field(
        default=0.5,
        description="Impact factor applied to the size/liquidity ratio",
        ge=0.0,
        le=10.0
    )

    sim_execution_delay_ms: int = Field(
        default=500,
        description="Fixed simulated execution delay (ms)",
        ge=0
    )

    sim_execution_jitter_ms: int = Field(
        default=200,
        description="Uniform random jitter added to the execution delay (ms)",
        ge=0
    )

    sim_leg_failure_probability: float = Field(
        default=0.05,
        description="Independent probability that a leg fails to fill",
        ge=0.0,
        le=1.0
    )

    sim_partial_fill_probability: float = Field(
        default=0.15,
        description="Probability of a partial fill when both legs succeed",
        ge=0.0,
        le=1.0
    )

    # ============================================================================
    # LLM (SEMANTIC DEPENDENCY)
    # ============================================================================

    llm_enabled: bool = Field(default=False, description="Allow outbound LLM requests")
    llm_provider: str = Field(default='deepseek', description="openai | deepseek | ollama")
    llm_api_key: Optional[str] = Field(default=None, description="Bearer token for the LLM endpoint")
    llm_base_url: str = Field(
        default='https://api.deepseek.com/v1',
        description="OpenAI-compatible base URL (POST {base}/chat/completions)"
    )
    llm_model: str = Field(default='deepseek-chat', description="Model name")
    llm_max_tokens: int = Field(default=1024, ge=64, le=16384, description="Max completion tokens")
    llm_temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="Sampling temperature")
    llm_rate_limit: int = Field(default=30, ge=1, le=10000, description="Requests per rolling minute")
    llm_cache_ttl_sec: float = Field(default=3600.0, ge=1.0, description="Semantic cache TTL (1 hour)")
    llm_cache_size: int = Field(default=10000, ge=10, description="Semantic cache capacity")
    llm_min_confidence: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Minimum model confidence for a semantic relationship"
    )
    llm_max_pairs_per_cycle: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Cap on candidate pairs analyzed per detection cycle"
    )

    # ============================================================================
    # EXTERNAL COLLABORATORS
    # ============================================================================

    market_fetch_limit: int = Field(default=200, ge=1, le=1000, description="Markets fetched per cycle")

    telegram_enabled: bool = Field(default=False, description="Send notifications to Telegram")
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    telegram_chat_id: Optional[str] = Field(default=None, description="Telegram chat id")

    repository_path: Optional[str] = Field(
        default=None,
        description="JSON-lines file for opportunities/executions (in-memory when unset)"
    )

    status_report_every_cycles: int = Field(default=10, ge=1, description="Status log cadence (cycles)")
    resolution_check_every_cycles: int = Field(
        default=30,
        ge=1,
        description="Resolution polling cadence for open positions (cycles)"
    )

    # ============================================================================
    # VALIDATORS
    # ============================================================================

    @field_validator('execution_mode')
    @classmethod
    def validate_execution_mode(cls, v):
        """Only paper execution is implemented"""
        if v.lower() != 'simulation':
            raise ValueError(f"Unsupported execution mode: {v}. Only 'simulation' is available")
        return v.lower()

    @field_validator('llm_provider')
    @classmethod
    def validate_llm_provider(cls, v):
        """Providers all speak the OpenAI chat-completions dialect"""
        allowed = {'openai', 'deepseek', 'ollama'}
        if v.lower() not in allowed:
            raise ValueError(f"Unknown LLM provider: {v}. Must be one of {sorted(allowed)}")
        return v.lower()

    def model_post_init(self, __context):
        """Validate cross-field limits after all fields are set"""
        if self.max_position_size_usd > self.max_total_exposure_usd:
            raise ValueError(
                f"max_position_size_usd (${self.max_position_size_usd:,.2f}) exceeds "
                f"max_total_exposure_usd (${self.max_total_exposure_usd:,.2f})"
            )

    @property
    def semantic_detection_active(self) -> bool:
        """True when the semantic detector will actually issue requests"""
        return self.enable_semantic_dependency and self.llm_enabled

    def validate_prerequisites(self) -> None:
        """
        Fail fast on missing credentials for integrations that are switched on.

        Raises:
            ConfigurationError: If an enabled integration lacks its credential
        """
        if self.semantic_detection_active and not self.llm_api_key:
            raise ConfigurationError(
                "Semantic dependency detection is enabled but LLM_API_KEY is not set",
                error_code='MISSING_LLM_API_KEY',
                details={'provider': self.llm_provider, 'base_url': self.llm_base_url}
            )

        if self.telegram_enabled and not (self.telegram_bot_token and self.telegram_chat_id):
            raise ConfigurationError(
                "Telegram notifications are enabled but TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID are missing",
                error_code='MISSING_TELEGRAM_CREDENTIALS'
            )


# Process-level cache used by the CLI entry point only; components receive
# their settings explicitly.
_settings: Optional[ArbitrageSettings] = None


def get_settings() -> ArbitrageSettings:
    """
    Get the cached settings instance.

    Returns:
        ArbitrageSettings: Configured settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.min_profit_threshold)
        0.5
    """
    global _settings
    if _settings is None:
        _settings = ArbitrageSettings()
    return _settings


def reload_settings() -> ArbitrageSettings:
    """
    Force reload settings from environment.

    Returns:
        ArbitrageSettings: New settings instance

    Example:
        >>> os.environ['MIN_PROFIT_THRESHOLD'] = '1.0'
        >>> settings = reload_settings()
        >>> print(settings.min_profit_threshold)
        1.0
    """
    global _settings
    _settings = ArbitrageSettings()
    return _settings


__all__ = ['get_settings', 'reload_settings', 'ArbitrageSettings']
