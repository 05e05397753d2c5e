"""
Execution Pipeline - Risk-Gated Simulated Execution

One opportunity at a time, under a single asyncio.Lock:

1. Size the position (executor's fractional Kelly)
2. Risk admission: all six checks; a rejection is logged and returns None
3. Simulated execution
4. Risk state update (position netting for filled trades, P&L for the rest)
5. Persist the execution and the opportunity's executed status (best-effort)
6. Notify (best-effort)

Sink failures in steps 5-6 are logged and never roll back steps 3-4: the
simulated trade happened whether or not it could be recorded.
"""

import asyncio
from collections import Counter
from typing import Any, Dict, Optional

from core.execution_models import ExecutionResult
from core.models import Opportunity, OpportunityStatus
from core.paper_executor import PaperTradingExecutor
from core.risk_manager import RiskManager
from utils.logger import get_logger, log_error_with_context, log_trade_event


logger = get_logger(__name__)


class ExecutionPipeline:
    """Serializes risk check -> execute -> risk update -> sinks"""

    def __init__(
        self,
        risk_manager: RiskManager,
        executor: PaperTradingExecutor,
        repository=None,
        notifier=None,
    ):
        self.risk_manager = risk_manager
        self.executor = executor
        self.repository = repository
        self.notifier = notifier
        self._lock = asyncio.Lock()

        self.executions = 0
        self.successful_executions = 0
        self.rejections = 0
        self.rejections_by_check: Counter = Counter()
        self.sink_failures = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def process(self, opportunity: Opportunity) -> Optional[ExecutionResult]:
        """
        Run one opportunity through the pipeline.

        Returns:
            The ExecutionResult, or None when sizing or risk admission declined it
        """
        async with self._lock:
            size = self.executor.calculate_position_size(opportunity)
            if size <= 0:
                logger.warning(f"Skipping {opportunity.dedup_key()}: bankroll too small to size a trade")
                return None

            check = self.risk_manager.check_pre_execution(opportunity, size)
            if not check.approved:
                self.rejections += 1
                self.rejections_by_check.update(check.failed_checks)
                log_trade_event(
                    logger, 'RISK_REJECTED',
                    opportunity_key=opportunity.dedup_key(),
                    opportunity_type=opportunity.opportunity_type.value,
                    size_usd=size,
                    reason=check.reason,
                    failed_checks=check.failed_checks,
                )
                return None

            result = await self.executor.execute(opportunity, size)
            if result is None:
                return None

            self.executions += 1
            if result.success:
                self.successful_executions += 1
            self._apply_to_risk(result)

            await self._persist(opportunity, result)
            await self._notify(result)
            return result

    def _apply_to_risk(self, result: ExecutionResult) -> None:
        entry_leg = result.legs[0]
        if result.success and entry_leg.filled_size > 0:
            self.risk_manager.update_after_execution(
                entry_leg.market_id,
                entry_leg.side,
                entry_leg.filled_size,
                entry_leg.executed_price,
                result.realized_profit,
                outcome=entry_leg.outcome,
            )
        else:
            self.risk_manager.record_trade_pnl(result.realized_profit)

    async def _persist(self, opportunity: Opportunity, result: ExecutionResult) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.save_execution(result)
            if opportunity.id:
                await self.repository.update_opportunity_status(opportunity.id, OpportunityStatus.EXECUTED)
        except Exception as e:
            self.sink_failures += 1
            log_error_with_context(
                logger, "Failed to persist execution", e,
                execution_id=result.execution_id, opportunity_key=result.opportunity_key
            )

    async def _notify(self, result: ExecutionResult) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_execution(result)
        except Exception as e:
            self.sink_failures += 1
            log_error_with_context(
                logger, "Failed to send execution notification", e,
                execution_id=result.execution_id
            )

    async def drain(self) -> None:
        """Wait for the in-flight execution, if any, to finish"""
        async with self._lock:
            pass

    def get_stats(self) -> Dict[str, Any]:
        return {
            'executions': self.executions,
            'successful_executions': self.successful_executions,
            'rejections': self.rejections,
            'rejections_by_check': dict(self.rejections_by_check),
            'sink_failures': self.sink_failures,
        }
