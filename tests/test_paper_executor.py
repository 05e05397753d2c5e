"""
Tests for the Paper Trading Executor

Covers:
1. Fractional Kelly sizing and its bounds
2. Deterministic fills for single- and two-leg trades
3. Leg 1 failure, leg 2 failure (unwind) and partial fills, driven by a
   scripted random source
4. Statistics: win rate, drawdown, Sharpe ratio, reset
"""

import math
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import pytest

from core.execution_models import ExecutionStatus, LegStatus, PaperTrade
from core.models import OpportunityType, TradeSide
from core.paper_executor import (
    LEG1_FAILED_REASON,
    LEG2_FAILED_REASON,
    SLIPPAGE_EXCEEDED_REASON,
    PaperTradingExecutor,
)

from conftest import build_settings


def scripted_rng(randoms, uniforms):
    """Random source returning the given draws in order"""
    rng = Mock()
    rng.random = Mock(side_effect=list(randoms))
    rng.uniform = Mock(side_effect=list(uniforms))
    return rng


def scripted_executor(randoms, uniforms, **overrides):
    settings = build_settings(
        sim_base_slippage_bps=0.0,
        sim_liquidity_impact=0.0,
        sim_execution_delay_ms=0,
        sim_execution_jitter_ms=0,
        **overrides
    )
    return PaperTradingExecutor(settings, rng=scripted_rng(randoms, uniforms), sleep=AsyncMock())


# ============================================================================
# SIZING
# ============================================================================

class TestKellySizing:
    """Test half-Kelly fractions and bankroll caps"""

    @pytest.mark.parametrize('confidence,profit,expected', [
        (0.80, 2.0, 0.25),   # raw half Kelly 0.30 capped at 25%
        (0.60, 1.0, 0.01),   # negative edge floored at 1%
        (0.55, 2.0, 0.05),
        (0.90, 0.0, 0.01),   # no edge
        (0.99, -1.0, 0.01),
    ])
    def test_kelly_fraction(self, confidence, profit, expected):
        assert PaperTradingExecutor.calculate_kelly_fraction(confidence, profit) == pytest.approx(expected)

    def test_size_capped_at_max_position(self, executor, multi_outcome_opportunity):
        assert executor.calculate_position_size(multi_outcome_opportunity) == 1000.0

    def test_no_trade_below_minimum_bankroll(self, executor, multi_outcome_opportunity):
        executor.bankroll = 9.0

        assert executor.calculate_position_size(multi_outcome_opportunity) == 0.0

    def test_small_bankroll_floors_at_minimum_trade(self, executor, multi_outcome_opportunity):
        executor.bankroll = 12.0

        assert executor.calculate_position_size(multi_outcome_opportunity) == 5.0


# ============================================================================
# EXECUTION
# ============================================================================

class TestDeterministicExecution:
    """No failures, no slippage: realized = edge - 1% fees"""

    @pytest.mark.asyncio
    async def test_single_leg_trade(self, executor, multi_outcome_opportunity):
        result = await executor.execute(multi_outcome_opportunity, 1000.0)

        assert result.success
        assert result.status == ExecutionStatus.COMPLETE
        assert result.expected_profit == pytest.approx(20.0)
        assert result.total_fees == pytest.approx(10.0)
        assert result.realized_profit == pytest.approx(10.0)
        assert result.bankroll_after == pytest.approx(10_010.0)
        assert result.opportunity_key == 'mo_market-mo'
        assert len(result.legs) == 1
        assert result.legs[0].side == TradeSide.BUY
        assert result.legs[0].filled_size == 1000.0

    @pytest.mark.asyncio
    async def test_two_leg_trade(self, executor, cross_market_opportunity):
        result = await executor.execute(cross_market_opportunity, 1000.0)

        assert result.success
        assert result.realized_profit == pytest.approx(105.0)
        assert [leg.side for leg in result.legs] == [TradeSide.BUY, TradeSide.SELL]
        assert [leg.market_id for leg in result.legs] == ['market-a', 'market-b']
        assert all(leg.status == LegStatus.FILLED for leg in result.legs)

    @pytest.mark.asyncio
    async def test_kelly_sized_when_size_omitted(self, executor, multi_outcome_opportunity):
        result = await executor.execute(multi_outcome_opportunity)

        assert result.total_size == 1000.0
        assert result.kelly_fraction == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_fees_exceeding_edge_is_a_loss(self, executor, multi_outcome_opportunity):
        thin_edge = replace(multi_outcome_opportunity, profit_percent=0.5)

        result = await executor.execute(thin_edge, 1000.0)

        assert not result.success
        assert result.failure_reason == SLIPPAGE_EXCEEDED_REASON
        assert result.realized_profit == pytest.approx(-5.0)

    @pytest.mark.asyncio
    async def test_insufficient_bankroll(self, executor, multi_outcome_opportunity):
        assert await executor.execute(multi_outcome_opportunity, 20_000.0) is None
        assert executor.trades == []
        assert executor.bankroll == 10_000.0

    @pytest.mark.asyncio
    async def test_execution_delay(self, multi_outcome_opportunity):
        sleep = AsyncMock()
        settings = build_settings(sim_execution_delay_ms=500, sim_execution_jitter_ms=0)
        executor = PaperTradingExecutor(settings, sleep=sleep)

        await executor.execute(multi_outcome_opportunity, 100.0)

        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_opportunity_id_is_carried(self, executor, multi_outcome_opportunity):
        multi_outcome_opportunity.id = 'opp-7'

        result = await executor.execute(multi_outcome_opportunity, 100.0)

        assert result.opportunity_id == 'opp-7'


class TestFailureModes:
    """Test the simulated CLOB failure modes"""

    @pytest.mark.asyncio
    async def test_leg1_failure_costs_penalty(self, multi_outcome_opportunity):
        settings = build_settings(sim_leg_failure_probability=1.0, sim_execution_delay_ms=0, sim_execution_jitter_ms=0)
        executor = PaperTradingExecutor(settings, sleep=AsyncMock())

        result = await executor.execute(multi_outcome_opportunity, 1000.0)

        assert not result.success
        assert result.failure_reason == LEG1_FAILED_REASON
        assert result.realized_profit == pytest.approx(-1.0)
        assert result.bankroll_after == pytest.approx(9_999.0)
        assert result.legs[0].filled_size == 0.0
        assert result.legs[0].status == LegStatus.FAILED

    @pytest.mark.asyncio
    async def test_leg2_failure_unwinds_at_loss(self, cross_market_opportunity):
        executor = scripted_executor(
            randoms=[0.5, 0.01], uniforms=[0.0, 0.0],
            sim_leg_failure_probability=0.1,
        )

        result = await executor.execute(cross_market_opportunity, 1000.0)

        assert result.failure_reason == LEG2_FAILED_REASON
        assert result.realized_profit == pytest.approx(-20.0)
        assert executor.bankroll == pytest.approx(9_980.0)
        assert [leg.status for leg in result.legs] == [LegStatus.FILLED, LegStatus.FAILED]

    @pytest.mark.asyncio
    async def test_partial_fill_captures_part_of_edge(self, cross_market_opportunity):
        """75% fill of a $115 edge, less $10 fees"""
        executor = scripted_executor(
            randoms=[0.9, 0.9, 0.0], uniforms=[0.75, 0.0, 0.0],
            sim_leg_failure_probability=0.05,
            sim_partial_fill_probability=0.15,
        )

        result = await executor.execute(cross_market_opportunity, 1000.0)

        assert result.success
        assert result.realized_profit == pytest.approx(76.25)
        assert all(leg.status == LegStatus.PARTIAL for leg in result.legs)
        assert all(leg.filled_size == pytest.approx(750.0) for leg in result.legs)

    @pytest.mark.asyncio
    async def test_single_leg_draws_no_second_failure(self, multi_outcome_opportunity):
        executor = scripted_executor(
            randoms=[0.5, 0.5], uniforms=[0.0],
            sim_leg_failure_probability=0.1,
            sim_partial_fill_probability=0.15,
        )

        result = await executor.execute(multi_outcome_opportunity, 1000.0)

        assert result.success
        assert executor._rng.random.call_count == 2

    @pytest.mark.asyncio
    async def test_both_legs_get_slippage_noise(self, cross_market_opportunity):
        """50 bps base on each leg, perturbed +20% on leg 1 and -20% on leg 2"""
        settings = build_settings(
            sim_base_slippage_bps=50.0,
            sim_liquidity_impact=0.0,
            sim_leg_failure_probability=0.0,
            sim_partial_fill_probability=0.0,
            sim_execution_delay_ms=0,
            sim_execution_jitter_ms=0,
        )
        rng = scripted_rng(randoms=[0.5, 0.5, 0.5], uniforms=[0.2, -0.2])
        executor = PaperTradingExecutor(settings, rng=rng, sleep=AsyncMock())

        result = await executor.execute(cross_market_opportunity, 1000.0)

        assert [leg.slippage_bps for leg in result.legs] == [pytest.approx(60.0), pytest.approx(40.0)]
        assert rng.uniform.call_count == 2
        # $115 edge - $10 slippage (100 bps) - $10 fees
        assert result.realized_profit == pytest.approx(95.0)


# ============================================================================
# STATISTICS
# ============================================================================

def paper_trade(realized: float, size: float = 100.0) -> PaperTrade:
    return PaperTrade(
        execution_id='x',
        opportunity_type=OpportunityType.CROSS_MARKET,
        size=size,
        expected_profit=realized,
        realized_profit=realized,
        success=realized > 0,
        timestamp=0.0,
    )


class TestStatistics:

    def test_sharpe_ratio(self, executor):
        executor.trades = [paper_trade(1.0), paper_trade(3.0)]

        assert executor.sharpe_ratio() == pytest.approx(math.sqrt(2) * math.sqrt(252))

    def test_sharpe_needs_two_trades(self, executor):
        executor.trades = [paper_trade(1.0)]

        assert executor.sharpe_ratio() == 0.0

    def test_identical_returns_have_no_sharpe(self, executor):
        executor.trades = [paper_trade(2.0), paper_trade(2.0), paper_trade(2.0)]

        assert executor.sharpe_ratio() == 0.0

    @pytest.mark.asyncio
    async def test_stats_after_trades(self, executor, multi_outcome_opportunity, cross_market_opportunity):
        await executor.execute(multi_outcome_opportunity, 1000.0)
        await executor.execute(cross_market_opportunity, 1000.0)

        stats = executor.get_stats()

        assert stats['total_trades'] == 2
        assert stats['win_rate'] == 100.0
        assert stats['net_profit'] == pytest.approx(115.0)
        assert stats['total_volume'] == 2000.0
        assert stats['by_type']['cross_market']['trades'] == 1
        assert executor.get_pnl()['absolute'] == pytest.approx(115.0)

    @pytest.mark.asyncio
    async def test_drawdown_tracks_losses(self, multi_outcome_opportunity):
        settings = build_settings(sim_leg_failure_probability=1.0, sim_execution_delay_ms=0, sim_execution_jitter_ms=0)
        executor = PaperTradingExecutor(settings, sleep=AsyncMock())

        await executor.execute(multi_outcome_opportunity, 1000.0)

        assert executor.get_stats()['max_drawdown'] == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_reset(self, executor, multi_outcome_opportunity):
        await executor.execute(multi_outcome_opportunity, 1000.0)

        executor.reset(starting_bankroll=500.0)

        assert executor.bankroll == 500.0
        assert executor.trades == []
        assert executor.get_recent_trades() == []
