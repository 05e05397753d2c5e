"""
Execution & Risk Data Types

Records produced by the slippage model, the risk manager and the paper
executor. ExecutionResult / ExecutionLeg are frozen: once a simulated trade
completes its record never changes.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.models import OpportunityType, Outcome, TradeSide


class LegStatus(Enum):
    FILLED = "filled"
    PARTIAL = "partial"
    FAILED = "failed"


class ExecutionStatus(Enum):
    COMPLETE = "complete"
    FAILED = "failed"


# ============================================================================
# SLIPPAGE
# ============================================================================

@dataclass(frozen=True)
class SlippageEstimate:
    """Price-impact estimate for one hypothetical order"""
    slippage_bps: float
    execution_price: float
    confidence: float
    liquidity_used: float
    reference_price: float
    side: TradeSide


@dataclass(frozen=True)
class ArbitrageSlippage:
    """Combined estimate for a one- or two-leg arbitrage"""
    leg1: SlippageEstimate
    leg2: Optional[SlippageEstimate]
    total_slippage_bps: float
    net_expected_profit: float


# ============================================================================
# RISK
# ============================================================================

@dataclass
class Position:
    """
    Signed net position in one outcome token of a market (BUY +, SELL -).

    ``size`` is the signed USD cost basis and ``shares`` the signed token
    count; prices (entry, current) are quoted in the held outcome.
    """
    market_id: str
    size: float
    shares: float
    current_price: float
    outcome: Outcome = Outcome.YES
    unrealized_pnl: float = 0.0
    opened_at: float = field(default_factory=time.time)

    @property
    def notional(self) -> float:
        return abs(self.size)

    @property
    def avg_entry_price(self) -> float:
        return self.size / self.shares if self.shares else 0.0

    def outcome_price(self, yes_price: float) -> float:
        return yes_price if self.outcome == Outcome.YES else 1.0 - yes_price

    def mark(self, yes_price: float) -> None:
        """Revalue at the market's YES price (a resolution payout is a YES price too)"""
        self.mark_outcome(self.outcome_price(yes_price))

    def mark_outcome(self, price: float) -> None:
        self.current_price = price
        self.unrealized_pnl = self.shares * price - self.size


@dataclass(frozen=True)
class RiskCheck:
    """Outcome of one named admission check"""
    name: str
    passed: bool
    message: str


@dataclass(frozen=True)
class RiskCheckResult:
    """Admission decision: approved iff every check passed"""
    approved: bool
    reason: Optional[str]
    checks: Tuple[RiskCheck, ...]

    @property
    def failed_checks(self) -> List[str]:
        return [c.name for c in self.checks if not c.passed]

    def as_tuple(self) -> Tuple[bool, Optional[str]]:
        return self.approved, self.reason


# ============================================================================
# EXECUTION
# ============================================================================

@dataclass(frozen=True)
class ExecutionLeg:
    """One simulated fill"""
    market_id: str
    outcome: Outcome
    side: TradeSide
    requested_size: float
    filled_size: float
    expected_price: float
    executed_price: float
    slippage_bps: float
    status: LegStatus


@dataclass(frozen=True)
class ExecutionResult:
    """Immutable record of one simulated arbitrage execution"""
    execution_id: str
    opportunity_key: str
    opportunity_type: OpportunityType
    legs: Tuple[ExecutionLeg, ...]
    total_size: float
    total_fees: float
    gas_cost: float
    expected_profit: float
    realized_profit: float
    status: ExecutionStatus
    started_at: float
    completed_at: float
    kelly_fraction: float
    bankroll_after: float
    failure_reason: Optional[str] = None
    opportunity_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETE

    @property
    def execution_time_ms(self) -> float:
        return (self.completed_at - self.started_at) * 1000

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['opportunity_type'] = self.opportunity_type.value
        data['status'] = self.status.value
        data['legs'] = [
            {
                **asdict(leg),
                'outcome': leg.outcome.value,
                'side': leg.side.value,
                'status': leg.status.value,
            }
            for leg in self.legs
        ]
        return data

    def summary(self) -> str:
        verdict = "✅ WIN" if self.success else "❌ LOSS"
        text = (
            f"{verdict} {self.opportunity_type.value} | size ${self.total_size:,.2f} | "
            f"expected ${self.expected_profit:+.2f} | realized ${self.realized_profit:+.2f}"
        )
        if self.failure_reason:
            text += f" | {self.failure_reason}"
        return text


@dataclass(frozen=True)
class PaperTrade:
    """Per-trade record kept in the executor's history for statistics"""
    execution_id: str
    opportunity_type: OpportunityType
    size: float
    expected_profit: float
    realized_profit: float
    success: bool
    timestamp: float

    @property
    def return_fraction(self) -> float:
        return self.realized_profit / self.size if self.size else 0.0
