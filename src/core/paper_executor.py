"""
Paper Trading Executor - Simulated Arbitrage Execution

Simulates executing detected opportunities against a paper bankroll so the
detectors' real profitability can be estimated before any capital is risked.

Position sizing (fractional Kelly):
    p     = clamp(confidence, 0.5, 0.95),  q = 1 - p
    odds  = (profit% / 100) / 0.02        (a failed arb is assumed to cost 2%)
    kelly = (odds * p - q) / odds * 0.5   clamped to [1%, 25%] of bankroll
    size  = bankroll * kelly, capped at max position and 25% of bankroll,
            floored at $5; no trade at all below a $10 bankroll

CLOB realities modeled per trade:
1. Capital is deducted up front and held for the execution delay
2. Leg 1 fails (p=0.05): capital returned minus a 0.1% failed-order fee
3. Leg 2 fails (p=0.05, two-market trades only): leg 1 is stuck and unwound
   at a 2% loss (non-atomic risk)
4. Partial fill (p=0.15 when both legs fill): only 50-100% of the edge is
   captured
5. Otherwise realized = gross edge * fill - slippage cost - 1% fees, and the
   trade only counts as a win when that is positive

Randomness (failures, fill ratio, delay jitter) flows from one injectable
random.Random; the delay itself goes through an injectable sleep so tests run
instantly and deterministically.
"""

import asyncio
import math
import random
import statistics
import time
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from config.constants import (
    FAILED_ORDER_PENALTY_RATE,
    KELLY_ASSUMED_LOSS,
    KELLY_FRACTION_MULTIPLIER,
    KELLY_MAX_FRACTION,
    KELLY_MAX_WIN_PROBABILITY,
    KELLY_MIN_FRACTION,
    KELLY_MIN_WIN_PROBABILITY,
    MAX_BANKROLL_FRACTION_PER_TRADE,
    MIN_BANKROLL_USD,
    MIN_TRADE_SIZE_USD,
    PARTIAL_FILL_MIN_RATIO,
    SHARPE_ANNUALIZATION_DAYS,
    SIMULATED_FEE_RATE,
    UNWIND_LOSS_RATE,
)
from config.settings import ArbitrageSettings
from core.execution_models import (
    ExecutionLeg,
    ExecutionResult,
    ExecutionStatus,
    LegStatus,
    PaperTrade,
    SlippageEstimate,
)
from core.models import Opportunity, PairwiseOpportunity, TradeSide
from core.slippage_model import SlippageModel
from utils.helpers import clamp, safe_divide
from utils.logger import get_logger, log_trade_event


logger = get_logger(__name__)


LEG1_FAILED_REASON = "Leg 1 execution failed"
LEG2_FAILED_REASON = "Leg 2 failed - position unwound at loss"
SLIPPAGE_EXCEEDED_REASON = "Slippage exceeded profit margin"


class PaperTradingExecutor:
    """Kelly-sized paper execution with non-atomic leg risk"""

    def __init__(
        self,
        settings: ArbitrageSettings,
        slippage_model: Optional[SlippageModel] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Args:
            settings: Supplies bankroll, max position, delays and failure probabilities
            slippage_model: Price-impact model (built from settings when omitted)
            rng: Source of every random draw the simulation makes
            sleep: Coroutine used for the execution delay (asyncio.sleep by default)
        """
        self.settings = settings
        self._rng = rng or random.Random()
        self.slippage_model = slippage_model or SlippageModel(
            base_slippage_bps=settings.sim_base_slippage_bps,
            liquidity_impact_factor=settings.sim_liquidity_impact,
            rng=self._rng,
        )
        self._sleep = sleep or asyncio.sleep

        self.max_position_size_usd = settings.max_position_size_usd
        self.leg_failure_probability = settings.sim_leg_failure_probability
        self.partial_fill_probability = settings.sim_partial_fill_probability
        self.execution_delay_ms = settings.sim_execution_delay_ms
        self.execution_jitter_ms = settings.sim_execution_jitter_ms

        self.starting_bankroll = settings.sim_starting_balance
        self.bankroll = self.starting_bankroll
        self.peak_balance = self.starting_bankroll
        self.max_drawdown = 0.0
        self.trades: List[PaperTrade] = []

        logger.info(
            f"📝 PaperTradingExecutor initialized:\n"
            f"   Bankroll: ${self.bankroll:,.2f}\n"
            f"   Max Position: ${self.max_position_size_usd:,.2f}\n"
            f"   Leg Failure Probability: {self.leg_failure_probability:.0%}\n"
            f"   Partial Fill Probability: {self.partial_fill_probability:.0%}\n"
            f"   Execution Delay: {self.execution_delay_ms}ms (+ up to {self.execution_jitter_ms}ms)"
        )

    # ========================================================================
    # POSITION SIZING
    # ========================================================================

    @staticmethod
    def calculate_kelly_fraction(confidence_score: float, profit_percent: float) -> float:
        """Half Kelly with win probability taken from the confidence score"""
        win_probability = clamp(confidence_score, KELLY_MIN_WIN_PROBABILITY, KELLY_MAX_WIN_PROBABILITY)
        lose_probability = 1 - win_probability

        odds = (profit_percent / 100) / KELLY_ASSUMED_LOSS
        if odds <= 0:
            return KELLY_MIN_FRACTION

        kelly = (odds * win_probability - lose_probability) / odds
        return clamp(kelly * KELLY_FRACTION_MULTIPLIER, KELLY_MIN_FRACTION, KELLY_MAX_FRACTION)

    def calculate_position_size(self, opportunity: Opportunity) -> float:
        if self.bankroll < MIN_BANKROLL_USD:
            return 0.0

        kelly = self.calculate_kelly_fraction(opportunity.confidence_score, opportunity.profit_percent)
        size = self.bankroll * kelly
        size = min(size, self.max_position_size_usd)
        size = min(size, self.bankroll * MAX_BANKROLL_FRACTION_PER_TRADE)
        return max(size, MIN_TRADE_SIZE_USD)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def execute(self, opportunity: Opportunity, size_usd: Optional[float] = None) -> Optional[ExecutionResult]:
        """
        Simulate executing an opportunity.

        Args:
            opportunity: Opportunity to trade
            size_usd: Pre-computed position size (Kelly-sized when omitted)

        Returns:
            Immutable ExecutionResult, or None when the bankroll cannot fund a trade
        """
        started_at = time.time()
        kelly_fraction = self.calculate_kelly_fraction(opportunity.confidence_score, opportunity.profit_percent)
        size = size_usd if size_usd is not None else self.calculate_position_size(opportunity)

        if size <= 0 or size > self.bankroll:
            logger.warning(
                f"Paper trade skipped: insufficient bankroll (${self.bankroll:,.2f}) for "
                f"{opportunity.opportunity_type.value}",
                extra={'bankroll': self.bankroll, 'size_usd': size}
            )
            return None

        # Capital is at risk for the whole execution window
        self.bankroll -= size

        jitter = self._rng.uniform(0, self.execution_jitter_ms) if self.execution_jitter_ms else 0.0
        await self._sleep((self.execution_delay_ms + jitter) / 1000)

        legs, realized, fees, failure_reason = self._simulate_clob_execution(opportunity, size)

        self._update_drawdown()

        result = ExecutionResult(
            execution_id=uuid.uuid4().hex,
            opportunity_key=opportunity.dedup_key(),
            opportunity_type=opportunity.opportunity_type,
            legs=legs,
            total_size=size,
            total_fees=fees,
            gas_cost=0.0,
            expected_profit=(opportunity.profit_percent / 100) * size,
            realized_profit=realized,
            status=ExecutionStatus.COMPLETE if failure_reason is None else ExecutionStatus.FAILED,
            started_at=started_at,
            completed_at=time.time(),
            kelly_fraction=kelly_fraction,
            bankroll_after=self.bankroll,
            failure_reason=failure_reason,
            opportunity_id=opportunity.id,
        )

        self.trades.append(PaperTrade(
            execution_id=result.execution_id,
            opportunity_type=result.opportunity_type,
            size=size,
            expected_profit=result.expected_profit,
            realized_profit=realized,
            success=result.success,
            timestamp=result.completed_at,
        ))

        self._log_trade(result)
        return result

    def _simulate_clob_execution(
        self,
        opportunity: Opportunity,
        size: float,
    ) -> Tuple[Tuple[ExecutionLeg, ...], float, float, Optional[str]]:
        """
        Draw the failure modes, settle the bankroll and build the legs.

        Returns:
            (legs, realized profit, fees, failure reason or None)
        """
        pairwise = isinstance(opportunity, PairwiseOpportunity)

        leg1_failed = self._rng.random() < self.leg_failure_probability
        leg2_failed = pairwise and not leg1_failed and self._rng.random() < self.leg_failure_probability

        fill_ratio = 1.0
        if not leg1_failed and not leg2_failed and self._rng.random() < self.partial_fill_probability:
            fill_ratio = self._rng.uniform(PARTIAL_FILL_MIN_RATIO, 1.0)

        leg1_estimate = self.slippage_model.add_noise(self.slippage_model.estimate(
            size, opportunity.market1_liquidity, TradeSide.BUY, opportunity.market1_price
        ))
        leg2_estimate = None
        if pairwise:
            leg2_estimate = self.slippage_model.add_noise(self.slippage_model.estimate(
                size, opportunity.market2_liquidity, TradeSide.SELL, opportunity.market2_price
            ))
        total_slippage_bps = leg1_estimate.slippage_bps + (leg2_estimate.slippage_bps if leg2_estimate else 0.0)

        fees = 0.0
        failure_reason = None
        if leg1_failed:
            realized = -size * FAILED_ORDER_PENALTY_RATE
            self.bankroll += size
            failure_reason = LEG1_FAILED_REASON
            leg1_status, leg2_status = LegStatus.FAILED, LegStatus.FAILED
        elif leg2_failed:
            realized = -size * UNWIND_LOSS_RATE
            self.bankroll += size + realized
            failure_reason = LEG2_FAILED_REASON
            leg1_status, leg2_status = LegStatus.FILLED, LegStatus.FAILED
        else:
            gross = (opportunity.profit_percent / 100) * size
            slippage_cost = (total_slippage_bps / 10000) * size
            fees = size * SIMULATED_FEE_RATE
            realized = gross * fill_ratio - slippage_cost - fees
            self.bankroll += size + realized
            if realized <= 0:
                failure_reason = SLIPPAGE_EXCEEDED_REASON
            leg_status = LegStatus.PARTIAL if fill_ratio < 1.0 else LegStatus.FILLED
            leg1_status, leg2_status = leg_status, leg_status

        legs = [self._build_leg(
            opportunity.market1_id, opportunity.market1_outcome, size, fill_ratio, leg1_estimate, leg1_status
        )]
        if pairwise:
            legs.append(self._build_leg(
                opportunity.market2_id, opportunity.market2_outcome, size, fill_ratio, leg2_estimate, leg2_status
            ))

        return tuple(legs), realized, fees, failure_reason

    @staticmethod
    def _build_leg(market_id, outcome, size: float, fill_ratio: float, estimate: SlippageEstimate, status: LegStatus) -> ExecutionLeg:
        if status == LegStatus.FAILED:
            filled = 0.0
        elif status == LegStatus.PARTIAL:
            filled = size * fill_ratio
        else:
            filled = size

        return ExecutionLeg(
            market_id=market_id,
            outcome=outcome,
            side=estimate.side,
            requested_size=size,
            filled_size=filled,
            expected_price=estimate.reference_price,
            executed_price=estimate.execution_price if filled > 0 else estimate.reference_price,
            slippage_bps=estimate.slippage_bps,
            status=status,
        )

    def _update_drawdown(self) -> None:
        if self.bankroll > self.peak_balance:
            self.peak_balance = self.bankroll
        if self.peak_balance > 0:
            drawdown = (self.peak_balance - self.bankroll) / self.peak_balance
            self.max_drawdown = max(self.max_drawdown, drawdown)

    def _log_trade(self, result: ExecutionResult) -> None:
        icon = "✅" if result.success else "❌"
        logger.info(
            f"{icon} Paper Trade #{len(self.trades)} | {result.opportunity_type.value.upper()} | "
            f"${result.total_size:,.2f} ({result.kelly_fraction:.1%} Kelly) | "
            f"P&L: ${result.realized_profit:+.4f} | Balance: ${self.bankroll:,.2f}"
            + (f"\n   Reason: {result.failure_reason}" if result.failure_reason else "")
        )
        log_trade_event(
            logger, 'PAPER_TRADE',
            execution_id=result.execution_id,
            opportunity_type=result.opportunity_type.value,
            size_usd=result.total_size,
            expected_profit=result.expected_profit,
            realized_pnl=result.realized_profit,
            success=result.success,
            failure_reason=result.failure_reason,
            bankroll=self.bankroll,
        )

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def get_stats(self) -> Dict[str, Any]:
        trades = self.trades
        wins = [t for t in trades if t.success]
        net_profit = sum(t.realized_profit for t in trades)

        by_type: Dict[str, Dict[str, float]] = defaultdict(lambda: {'trades': 0, 'profit': 0.0, 'wins': 0})
        for trade in trades:
            entry = by_type[trade.opportunity_type.value]
            entry['trades'] += 1
            entry['profit'] += trade.realized_profit
            entry['wins'] += 1 if trade.success else 0

        return {
            'total_trades': len(trades),
            'successful_trades': len(wins),
            'failed_trades': len(trades) - len(wins),
            'total_volume': sum(t.size for t in trades),
            'gross_profit': sum(max(0.0, t.realized_profit) for t in trades),
            'total_fees': sum(t.size * SIMULATED_FEE_RATE for t in trades),
            'net_profit': net_profit,
            'win_rate': safe_divide(len(wins), len(trades)) * 100,
            'avg_profit_per_trade': safe_divide(net_profit, len(trades)),
            'max_drawdown': self.max_drawdown * 100,
            'sharpe_ratio': self.sharpe_ratio(),
            'by_type': {
                name: {
                    'trades': entry['trades'],
                    'profit': entry['profit'],
                    'win_rate': entry['wins'] / entry['trades'] * 100,
                }
                for name, entry in by_type.items()
            },
            'balance': self.bankroll,
            'starting_balance': self.starting_bankroll,
        }

    def sharpe_ratio(self) -> float:
        """Annualized mean / sample stdev of per-trade returns"""
        returns = [t.return_fraction for t in self.trades]
        if len(returns) < 2:
            return 0.0

        mean = statistics.mean(returns)
        std = statistics.stdev(returns)
        if std == 0:
            return 0.0
        return mean / std * math.sqrt(SHARPE_ANNUALIZATION_DAYS)

    def get_pnl(self) -> Dict[str, float]:
        absolute = self.bankroll - self.starting_bankroll
        return {
            'absolute': absolute,
            'percent': safe_divide(absolute, self.starting_bankroll) * 100,
        }

    def get_recent_trades(self, count: int = 10) -> List[PaperTrade]:
        return self.trades[-count:] if count > 0 else []

    def reset(self, starting_bankroll: Optional[float] = None) -> None:
        """Start a fresh paper account"""
        if starting_bankroll is not None:
            self.starting_bankroll = starting_bankroll
        self.bankroll = self.starting_bankroll
        self.peak_balance = self.starting_bankroll
        self.max_drawdown = 0.0
        self.trades = []
        logger.info(f"🔄 Paper account reset with ${self.starting_bankroll:,.2f} bankroll")
