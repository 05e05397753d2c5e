"""
Slippage Model

Estimates the execution price of a hypothetical order from a single liquidity
scalar:

    bps = base + (size / liquidity) * impact_factor * 10_000 + extremity

    extremity = (price - 0.9) * 100   when buying above 0.9
              = (0.1 - price) * 100   when selling below 0.1
              = 0                     otherwise (at most 10 bps)

    execution price = price * (1 +/- bps / 10_000), clamped to [0.01, 0.99]
    confidence      = max(0.3, 1 - 2 * size / liquidity)

MODELING SIMPLIFICATION: markets expose one liquidity number, not an order
book depth curve, so the impact term is linear in size/liquidity. Estimates
are approximate by construction; treat them as a haircut, not a fill price.
"""

import random
from typing import Optional

from config.constants import (
    EXTREME_BUY_PRICE,
    EXTREME_SELL_PRICE,
    EXTREMITY_BPS_PER_UNIT,
    MAX_EXECUTION_PRICE,
    MIN_EXECUTION_PRICE,
    SLIPPAGE_CONFIDENCE_DECAY,
    SLIPPAGE_MIN_CONFIDENCE,
    SLIPPAGE_NOISE_BAND,
)
from core.execution_models import ArbitrageSlippage, SlippageEstimate
from core.models import TradeSide
from utils.helpers import clamp


# Size/liquidity ratio assumed when a market reports no liquidity at all
MAX_LIQUIDITY_RATIO = 1.0


class SlippageModel:
    """Linear liquidity-impact slippage estimator"""

    def __init__(
        self,
        base_slippage_bps: float = 10.0,
        liquidity_impact_factor: float = 0.5,
        rng: Optional[random.Random] = None,
    ):
        self.base_slippage_bps = base_slippage_bps
        self.liquidity_impact_factor = liquidity_impact_factor
        self._rng = rng or random.Random()

    @staticmethod
    def liquidity_ratio(size_usd: float, liquidity: float) -> float:
        if liquidity <= 0:
            return MAX_LIQUIDITY_RATIO
        return size_usd / liquidity

    @staticmethod
    def price_extremity_bps(price: float, side: TradeSide) -> float:
        """Extra impact when pushing a price further toward 0 or 1"""
        if side == TradeSide.BUY and price > EXTREME_BUY_PRICE:
            return (price - EXTREME_BUY_PRICE) * EXTREMITY_BPS_PER_UNIT
        if side == TradeSide.SELL and price < EXTREME_SELL_PRICE:
            return (EXTREME_SELL_PRICE - price) * EXTREMITY_BPS_PER_UNIT
        return 0.0

    @staticmethod
    def apply_slippage(price: float, slippage_bps: float, side: TradeSide) -> float:
        """Shift price against the trader and clamp into the tradable band"""
        multiplier = slippage_bps / 10000
        shifted = price * (1 + multiplier) if side == TradeSide.BUY else price * (1 - multiplier)
        return clamp(shifted, MIN_EXECUTION_PRICE, MAX_EXECUTION_PRICE)

    def estimate(
        self,
        size_usd: float,
        liquidity: float,
        side: TradeSide,
        price: float,
    ) -> SlippageEstimate:
        """
        Estimate slippage for one order.

        Args:
            size_usd: Order size in USD
            liquidity: Market liquidity scalar in USD
            side: BUY or SELL
            price: Current probability price of the traded outcome
        """
        ratio = self.liquidity_ratio(size_usd, liquidity)
        total_bps = (
            self.base_slippage_bps
            + ratio * self.liquidity_impact_factor * 10000
            + self.price_extremity_bps(price, side)
        )

        return SlippageEstimate(
            slippage_bps=total_bps,
            execution_price=self.apply_slippage(price, total_bps, side),
            confidence=max(SLIPPAGE_MIN_CONFIDENCE, 1 - ratio * SLIPPAGE_CONFIDENCE_DECAY),
            liquidity_used=liquidity,
            reference_price=price,
            side=side,
        )

    def add_noise(self, estimate: SlippageEstimate) -> SlippageEstimate:
        """
        Perturb the bps estimate by a uniform +/-20% and recompute the price
        from the original reference price in the same trade direction.
        """
        factor = 1 + self._rng.uniform(-SLIPPAGE_NOISE_BAND, SLIPPAGE_NOISE_BAND)
        noisy_bps = max(0.0, estimate.slippage_bps * factor)

        return SlippageEstimate(
            slippage_bps=noisy_bps,
            execution_price=self.apply_slippage(estimate.reference_price, noisy_bps, estimate.side),
            confidence=estimate.confidence,
            liquidity_used=estimate.liquidity_used,
            reference_price=estimate.reference_price,
            side=estimate.side,
        )

    def estimate_arbitrage(
        self,
        size_usd: float,
        leg1_liquidity: float,
        leg1_price: float,
        leg1_side: TradeSide,
        leg2_liquidity: Optional[float] = None,
        leg2_price: Optional[float] = None,
        leg2_side: Optional[TradeSide] = None,
    ) -> ArbitrageSlippage:
        """
        Sum the slippage of both legs and net it against the gross price gap.

        Single-leg trades have no price gap to capture, so their net expected
        profit is just the negative slippage cost.
        """
        leg1 = self.estimate(size_usd, leg1_liquidity, leg1_side, leg1_price)
        total_bps = leg1.slippage_bps

        leg2 = None
        if leg2_liquidity is not None and leg2_price is not None and leg2_side is not None:
            leg2 = self.estimate(size_usd, leg2_liquidity, leg2_side, leg2_price)
            total_bps += leg2.slippage_bps

        gross_profit = abs(leg1_price - leg2_price) * size_usd if leg2_price is not None else 0.0
        slippage_cost = (total_bps / 10000) * size_usd

        return ArbitrageSlippage(
            leg1=leg1,
            leg2=leg2,
            total_slippage_bps=total_bps,
            net_expected_profit=gross_profit - slippage_cost,
        )
