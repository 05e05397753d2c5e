"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import random
import sys
import os
from unittest.mock import AsyncMock

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from config.settings import ArbitrageSettings
from core.models import MarketSnapshot, MultiOutcomeOpportunity, CrossMarketOpportunity, MatchType, Outcome, SpreadDirection
from core.paper_executor import PaperTradingExecutor
from core.risk_manager import RiskLimits, RiskManager


def build_settings(**overrides) -> ArbitrageSettings:
    """Settings isolated from any local .env file"""
    return ArbitrageSettings(_env_file=None, **overrides)


def make_market(
    market_id: str,
    question: str,
    yes: float = 0.5,
    no: float = None,
    liquidity: float = 60_000.0,
    volume: float = 0.0,
    category: str = 'other',
    **kwargs
) -> MarketSnapshot:
    """Binary market snapshot with prices given as YES/NO"""
    no_price = round(1 - yes, 6) if no is None else no
    return MarketSnapshot(
        id=market_id,
        question=question,
        prices=(no_price, yes),
        liquidity=liquidity,
        volume=volume,
        category=category,
        **kwargs
    )


class FakeClock:
    """Manually advanced epoch clock"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    """Default settings without .env overrides"""
    return build_settings()


@pytest.fixture
def deterministic_settings():
    """Paper execution that never fails, never slips and never waits"""
    return build_settings(
        sim_leg_failure_probability=0.0,
        sim_partial_fill_probability=0.0,
        sim_base_slippage_bps=0.0,
        sim_liquidity_impact=0.0,
        sim_execution_delay_ms=0,
        sim_execution_jitter_ms=0,
        trade_cooldown_sec=0.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def risk_manager(deterministic_settings, clock):
    return RiskManager(RiskLimits.from_settings(deterministic_settings), clock=clock)


@pytest.fixture
def executor(deterministic_settings):
    return PaperTradingExecutor(deterministic_settings, rng=random.Random(7), sleep=AsyncMock())


@pytest.fixture
def multi_outcome_opportunity():
    """Underpriced binary market: YES 0.47 + NO 0.50"""
    return MultiOutcomeOpportunity(
        market1_id='market-mo',
        market1_question='Will the Fed cut rates in March?',
        market1_price=0.47,
        market1_liquidity=100_000.0,
        yes_price=0.47,
        no_price=0.50,
        price_sum=0.97,
        direction=SpreadDirection.UNDERPRICED,
        spread=0.03,
        profit_percent=2.0,
        confidence_score=0.8,
    )


@pytest.fixture
def cross_market_opportunity():
    """Same event quoted at 0.40 and 0.45"""
    return CrossMarketOpportunity(
        market1_id='market-a',
        market1_question='Will Bitcoin reach $100k in 2025?',
        market1_price=0.40,
        market1_outcome=Outcome.YES,
        market1_liquidity=80_000.0,
        market2_id='market-b',
        market2_question='Bitcoin to reach $100k in 2025?',
        market2_price=0.45,
        market2_outcome=Outcome.YES,
        market2_liquidity=90_000.0,
        match_type=MatchType.EXACT,
        similarity_score=0.9,
        shared_entities=['bitcoin', '2025'],
        spread=0.05,
        profit_percent=11.5,
        confidence_score=0.85,
    )
