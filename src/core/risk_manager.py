"""
Risk Manager - Admission Control for Simulated Trades

Every opportunity passes six independent checks before the executor may
touch it. All six are evaluated and reported; approval requires every one:

1. position_limit : |net position in market1| + size <= max position
2. total_exposure : aggregate exposure + size <= max total exposure
3. daily_loss     : daily P&L > -max daily loss
4. liquidity      : min liquidity across all legs >= min liquidity
5. cooldown       : seconds since last trade >= cooldown
6. profitability  : profit% - rough slippage% > 0.1%
                    (rough slippage% = size / market1 liquidity * 0.5 * 100)

After a completed execution the manager is also the state holder: signed
per-market net positions, aggregate exposure, daily P&L and volume, last
trade time. Daily counters reset the first time any check runs at or after
the next UTC midnight.

Settlement P&L from resolved markets is kept apart from daily trading P&L so
a resolution never trips (or un-trips) the daily loss limit.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from config.constants import MIN_PROFIT_AFTER_SLIPPAGE_PCT, ROUGH_SLIPPAGE_FACTOR
from core.execution_models import Position, RiskCheck, RiskCheckResult
from core.models import Opportunity, Outcome, TradeSide
from utils.helpers import next_utc_midnight
from utils.logger import get_logger


logger = get_logger(__name__)

# Net sizes closer to zero than this are treated as flat
_FLAT_EPSILON = 1e-9


@dataclass
class RiskLimits:
    """Mutable so an emergency stop can clamp it in place"""
    max_position_size_usd: float
    max_total_exposure_usd: float
    max_daily_loss_usd: float
    min_liquidity_usd: float
    cooldown_sec: float

    @classmethod
    def from_settings(cls, settings) -> "RiskLimits":
        return cls(
            max_position_size_usd=settings.max_position_size_usd,
            max_total_exposure_usd=settings.max_total_exposure_usd,
            max_daily_loss_usd=settings.max_daily_loss_usd,
            min_liquidity_usd=settings.min_liquidity_usd,
            cooldown_sec=settings.trade_cooldown_sec,
        )


class RiskManager:
    """
    Admission gate and post-trade state holder.

    Single-writer: mutated only from the execution pipeline's lock.
    """

    def __init__(self, limits: RiskLimits, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            limits: Risk limits
            clock: Epoch-seconds clock (injectable for tests)
        """
        self.limits = limits
        self._clock = clock or time.time

        self._positions: Dict[str, Position] = {}
        self.total_exposure = 0.0
        self.daily_pnl = 0.0
        self.daily_volume = 0.0
        self.settlement_pnl = 0.0
        self.last_trade_time: Optional[float] = None
        self.emergency_stopped = False
        self._daily_reset_at = self._next_midnight()

        logger.info(
            f"🛡️  RiskManager initialized:\n"
            f"   Max Position/Market: ${limits.max_position_size_usd:,.0f}\n"
            f"   Max Total Exposure: ${limits.max_total_exposure_usd:,.0f}\n"
            f"   Max Daily Loss: ${limits.max_daily_loss_usd:,.0f}\n"
            f"   Min Liquidity: ${limits.min_liquidity_usd:,.0f}\n"
            f"   Cooldown: {limits.cooldown_sec:.1f}s"
        )

    def _next_midnight(self) -> float:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return next_utc_midnight(now).timestamp()

    # ========================================================================
    # ADMISSION CHECKS
    # ========================================================================

    def check_pre_execution(self, opportunity: Opportunity, size_usd: float) -> RiskCheckResult:
        """
        Run all six admission checks.

        Returns:
            RiskCheckResult with approval, the first failure reason, and every
            named check outcome
        """
        self.check_daily_reset()

        checks = (
            self._check_position_limit(opportunity, size_usd),
            self._check_total_exposure(size_usd),
            self._check_daily_loss(),
            self._check_liquidity(opportunity),
            self._check_cooldown(),
            self._check_profitability(opportunity, size_usd),
        )
        failed = next((c for c in checks if not c.passed), None)

        return RiskCheckResult(
            approved=failed is None,
            reason=failed.message if failed else None,
            checks=checks,
        )

    def _check_position_limit(self, opportunity: Opportunity, size_usd: float) -> RiskCheck:
        existing = self._positions.get(opportunity.market1_id)
        new_size = (existing.notional if existing else 0.0) + size_usd
        passed = new_size <= self.limits.max_position_size_usd
        return RiskCheck(
            name='position_limit',
            passed=passed,
            message='OK' if passed else (
                f"Position would exceed limit: ${new_size:.2f} > ${self.limits.max_position_size_usd:.2f}"
            ),
        )

    def _check_total_exposure(self, size_usd: float) -> RiskCheck:
        new_exposure = self.total_exposure + size_usd
        passed = new_exposure <= self.limits.max_total_exposure_usd
        return RiskCheck(
            name='total_exposure',
            passed=passed,
            message='OK' if passed else (
                f"Total exposure would exceed limit: ${new_exposure:.2f} > ${self.limits.max_total_exposure_usd:.2f}"
            ),
        )

    def _check_daily_loss(self) -> RiskCheck:
        passed = self.daily_pnl > -self.limits.max_daily_loss_usd
        return RiskCheck(
            name='daily_loss',
            passed=passed,
            message='OK' if passed else f"Daily loss limit reached: ${abs(self.daily_pnl):.2f}",
        )

    def _check_liquidity(self, opportunity: Opportunity) -> RiskCheck:
        min_liquidity = opportunity.legs_liquidity()
        passed = min_liquidity >= self.limits.min_liquidity_usd
        return RiskCheck(
            name='liquidity',
            passed=passed,
            message='OK' if passed else (
                f"Insufficient liquidity: ${min_liquidity:.0f} < ${self.limits.min_liquidity_usd:.0f}"
            ),
        )

    def _check_cooldown(self) -> RiskCheck:
        if self.last_trade_time is None:
            return RiskCheck(name='cooldown', passed=True, message='OK')

        elapsed = self._clock() - self.last_trade_time
        passed = elapsed >= self.limits.cooldown_sec
        return RiskCheck(
            name='cooldown',
            passed=passed,
            message='OK' if passed else f"Cooldown active: {self.limits.cooldown_sec - elapsed:.1f}s remaining",
        )

    def _check_profitability(self, opportunity: Opportunity, size_usd: float) -> RiskCheck:
        if opportunity.market1_liquidity > 0:
            rough_slippage = (size_usd / opportunity.market1_liquidity) * ROUGH_SLIPPAGE_FACTOR * 100
        else:
            rough_slippage = float('inf')
        net_profit = opportunity.profit_percent - rough_slippage
        passed = net_profit > MIN_PROFIT_AFTER_SLIPPAGE_PCT
        return RiskCheck(
            name='profitability',
            passed=passed,
            message='OK' if passed else f"Expected profit after slippage too low: {net_profit:.2f}%",
        )

    # ========================================================================
    # STATE UPDATES
    # ========================================================================

    def update_after_execution(
        self,
        market_id: str,
        side: TradeSide,
        size_usd: float,
        price: float,
        pnl: float,
        outcome: Outcome = Outcome.YES,
    ) -> None:
        """
        Apply a completed execution: net the position, recompute exposure,
        accumulate daily P&L and volume, stamp the last trade time.

        Args:
            market_id: Market traded
            side: BUY or SELL of ``outcome``
            size_usd: Filled USD notional
            price: Executed price of ``outcome``
            pnl: Realized P&L booked to the day
            outcome: Outcome token traded
        """
        self.daily_pnl += pnl
        self.daily_volume += size_usd
        self.last_trade_time = self._clock()

        existing = self._positions.get(market_id)
        if size_usd > 0 and price > 0:
            if existing is None:
                delta = size_usd if side == TradeSide.BUY else -size_usd
                self._positions[market_id] = Position(
                    market_id=market_id,
                    size=delta,
                    shares=delta / price,
                    current_price=price,
                    outcome=outcome,
                    opened_at=self.last_trade_time,
                )
            else:
                self._net_into(existing, side, size_usd, price, outcome)

        self._recompute_exposure()

        logger.debug(
            f"Risk state updated: {market_id[:16]} {side.value} {outcome.value} ${size_usd:.2f} @ {price:.4f}",
            extra={
                'market_id': market_id,
                'side': side.value,
                'outcome': outcome.value,
                'size_usd': size_usd,
                'pnl': pnl,
                'daily_pnl': self.daily_pnl,
                'total_exposure': self.total_exposure,
            }
        )

    def _net_into(
        self,
        position: Position,
        side: TradeSide,
        size_usd: float,
        price: float,
        outcome: Outcome,
    ) -> None:
        shares = size_usd / price
        if outcome != position.outcome:
            # Buying one outcome token is selling the other at the complement
            price = 1.0 - price
            size_usd = shares * price
            side = TradeSide.SELL if side == TradeSide.BUY else TradeSide.BUY

        delta = size_usd if side == TradeSide.BUY else -size_usd
        delta_shares = shares if side == TradeSide.BUY else -shares
        new_size = position.size + delta

        if abs(new_size) <= _FLAT_EPSILON:
            del self._positions[position.market_id]
            return

        if position.size * delta > 0:
            position.shares += delta_shares
        elif position.size * new_size > 0:
            # Partial reduce: remaining shares keep their entry price
            position.shares *= new_size / position.size
        else:
            # Flipped through flat: the remainder was opened at this price
            position.shares = new_size / price if price > 0 else 0.0
        position.size = new_size
        position.mark_outcome(price)

    def record_trade_pnl(self, pnl: float) -> None:
        """Book P&L of an execution that left no open position (failed or unwound legs)"""
        self.daily_pnl += pnl
        self.last_trade_time = self._clock()

    def _recompute_exposure(self) -> None:
        self.total_exposure = sum(p.notional for p in self._positions.values())

    def mark_to_market(self, prices: Mapping[str, float]) -> float:
        """
        Refresh current price and unrealized P&L of open positions.

        Args:
            prices: market_id -> current YES price (NO holdings mark at 1 - YES)

        Returns:
            Total unrealized P&L across open positions
        """
        for market_id, position in self._positions.items():
            if market_id in prices:
                position.mark(prices[market_id])
        return sum(p.unrealized_pnl for p in self._positions.values())

    def settle_position(self, market_id: str, resolution_price: float) -> Optional[float]:
        """
        Close a position at its market's final YES payout (0.0 or 1.0); NO
        holdings are paid the complement.

        Releases the exposure and books settlement P&L separately from daily
        trading P&L.

        Returns:
            Settlement P&L, or None if there was no open position
        """
        position = self._positions.pop(market_id, None)
        if position is None:
            return None

        position.mark(resolution_price)
        pnl = position.unrealized_pnl
        self.settlement_pnl += pnl
        self._recompute_exposure()

        logger.info(
            f"🏁 Position settled: {market_id[:16]} @ {resolution_price:.2f} | P&L ${pnl:+.2f}",
            extra={'market_id': market_id, 'resolution_price': resolution_price, 'settlement_pnl': pnl}
        )
        return pnl

    # ========================================================================
    # DAILY RESET & EMERGENCY STOP
    # ========================================================================

    def check_daily_reset(self) -> bool:
        """Reset daily counters once the UTC-midnight boundary has passed"""
        if self._clock() >= self._daily_reset_at:
            self.reset_daily()
            return True
        return False

    def reset_daily(self) -> None:
        self.daily_pnl = 0.0
        self.daily_volume = 0.0
        self._daily_reset_at = self._next_midnight()
        logger.info("🔄 Daily risk counters reset")

    @property
    def daily_reset_at(self) -> float:
        return self._daily_reset_at

    def emergency_stop(self) -> None:
        """Block every further approval; positions and counters are untouched"""
        self.limits.max_total_exposure_usd = 0.0
        self.limits.max_daily_loss_usd = 0.0
        self.emergency_stopped = True
        logger.critical("🚨 EMERGENCY STOP ACTIVATED - all new trades blocked")

    # ========================================================================
    # STATUS
    # ========================================================================

    def get_positions(self) -> List[Position]:
        return list(self._positions.values())

    def get_position(self, market_id: str) -> Optional[Position]:
        return self._positions.get(market_id)

    def get_state(self) -> Dict[str, Any]:
        limits_reached = []
        if self.daily_pnl <= -self.limits.max_daily_loss_usd:
            limits_reached.append('daily_loss')
        if self.total_exposure >= self.limits.max_total_exposure_usd:
            limits_reached.append('total_exposure')

        return {
            'daily_pnl': self.daily_pnl,
            'daily_volume': self.daily_volume,
            'settlement_pnl': self.settlement_pnl,
            'total_exposure': self.total_exposure,
            'position_count': len(self._positions),
            'last_trade_time': self.last_trade_time,
            'emergency_stopped': self.emergency_stopped,
            'limits_reached': limits_reached,
        }
