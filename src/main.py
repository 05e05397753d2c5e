"""
Main Entry Point for the Prediction-Market Arbitrage Engine
Long-running detection loop with risk-managed paper execution
"""

import os
import sys
import signal
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config.constants import GRACEFUL_SHUTDOWN_TIMEOUT_SEC, MAX_CONSECUTIVE_CYCLE_ERRORS
from config.settings import ArbitrageSettings, get_settings
from core.detection_engine import DetectionEngine
from core.execution_pipeline import ExecutionPipeline
from core.models import MarketSnapshot, Opportunity
from core.paper_executor import PaperTradingExecutor
from core.risk_manager import RiskLimits, RiskManager
from services.interfaces import MarketFeed, Notifier, OpportunityRepository, ResolutionSource
from services.market_feed import GammaMarketFeed
from services.notifier import LogNotifier, TelegramNotifier
from services.repository import InMemoryRepository, JsonlRepository
from services.resolution import NullResolutionSource
from utils.exceptions import ArbitrageBotError, ConfigurationError
from utils.logger import get_logger, log_error_with_context, setup_logging


logger = get_logger(__name__)


@dataclass
class ArbitrageContext:
    """Every collaborator the bot needs, injected as one bundle"""
    settings: ArbitrageSettings
    feed: MarketFeed
    engine: DetectionEngine
    risk_manager: RiskManager
    executor: PaperTradingExecutor
    pipeline: ExecutionPipeline
    repository: OpportunityRepository
    notifier: Notifier
    resolution_source: ResolutionSource
    closeables: List[Any] = field(default_factory=list)

    @classmethod
    def build(cls, settings: ArbitrageSettings) -> "ArbitrageContext":
        """Wire the default production collaborators from settings"""
        feed = GammaMarketFeed(limit=settings.market_fetch_limit)
        closeables: List[Any] = [feed]

        if settings.repository_path:
            repository = JsonlRepository(settings.repository_path)
        else:
            repository = InMemoryRepository()

        if settings.telegram_enabled:
            notifier = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
            closeables.append(notifier)
        else:
            notifier = LogNotifier()

        semantic_detector = None
        if settings.enable_semantic_dependency:
            from llm.llm_client import LLMClient
            from llm.semantic_cache import SemanticCache
            from strategies.semantic_dependency_detector import SemanticDependencyDetector

            llm_client = LLMClient(settings)
            cache = SemanticCache(max_size=settings.llm_cache_size, ttl_sec=settings.llm_cache_ttl_sec)
            semantic_detector = SemanticDependencyDetector(settings, llm_client, cache)
            closeables.append(llm_client)

        engine = DetectionEngine.from_settings(settings, repository=repository, semantic_detector=semantic_detector)
        risk_manager = RiskManager(RiskLimits.from_settings(settings))
        executor = PaperTradingExecutor(settings)
        pipeline = ExecutionPipeline(risk_manager, executor, repository=repository, notifier=notifier)

        return cls(
            settings=settings,
            feed=feed,
            engine=engine,
            risk_manager=risk_manager,
            executor=executor,
            pipeline=pipeline,
            repository=repository,
            notifier=notifier,
            resolution_source=NullResolutionSource(),
            closeables=closeables,
        )


class ArbitrageBot:
    """
    Main bot orchestrator
    Manages lifecycle, the detection cycle and paper execution
    """

    def __init__(self, context: ArbitrageContext):
        """
        Initialize bot with:
        - Non-overlapping detection cycles (a tick that finds a cycle still
          running is skipped)
        - Graceful shutdown that lets an in-flight execution finish
        - Emergency stop after repeated cycle failures
        """
        self.context = context
        self.settings = context.settings
        self.is_running = False
        self.start_time: Optional[datetime] = None
        self._shutdown_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._cycle_task: Optional[asyncio.Task] = None

        self.cycles_run = 0
        self.cycles_skipped = 0
        self.cycle_errors = 0
        self.consecutive_errors = 0
        self.opportunities_found = 0
        self.executions_attempted = 0
        self.positions_settled = 0

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
        self.is_running = False
        if not self._shutdown_event.is_set():
            self._shutdown_event.set()

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def initialize(self) -> None:
        """Validate prerequisites and announce startup"""
        self.settings.validate_prerequisites()

        logger.info(
            f"Bot initialized with {len(self.context.engine.detectors)} detectors: "
            f"{', '.join(d.name for d in self.context.engine.detectors)}"
        )
        await self._send_message(
            f"🤖 *Arbitrage Engine Started*\n"
            f"Mode: {self.settings.execution_mode}\n"
            f"Threshold: {self.settings.min_profit_threshold}%"
        )

    async def start(self) -> None:
        """Run detection cycles on a fixed interval until shutdown"""
        if self.is_running:
            logger.warning("Bot is already running")
            return

        self.is_running = True
        self.start_time = datetime.now()

        logger.info("=" * 80)
        logger.info("Starting Prediction-Market Arbitrage Engine")
        logger.info(f"Execution Mode: {self.settings.execution_mode.upper()}")
        logger.info(f"Detection Interval: {self.settings.detection_interval_sec:.1f}s")
        logger.info(f"Starting Bankroll: ${self.context.executor.bankroll:,.2f}")
        logger.info(f"Min Profit: {self.settings.min_profit_threshold:.2f}% | Min Confidence: {self.settings.min_confidence:.2f}")
        logger.info("=" * 80)

        try:
            while self.is_running and not self._shutdown_event.is_set():
                if self._cycle_lock.locked():
                    self.cycles_skipped += 1
                    logger.warning("Previous detection cycle still running, skipping this tick")
                else:
                    self._cycle_task = asyncio.create_task(self.run_cycle())

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.settings.detection_interval_sec)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.shutdown()

    async def stop(self) -> None:
        """Request a graceful stop"""
        logger.info("Stopping bot...")
        self.is_running = False
        self._shutdown_event.set()

    async def shutdown(self) -> None:
        """
        Clean up resources on shutdown

        - Waits for the current cycle and any in-flight execution
        - Logs final statistics
        - Sends a summary notification
        - Closes network sessions
        """
        logger.info("Shutting down bot...")
        self.is_running = False

        try:
            if self._cycle_task is not None and not self._cycle_task.done():
                await asyncio.wait_for(self._cycle_task, timeout=GRACEFUL_SHUTDOWN_TIMEOUT_SEC)
            await asyncio.wait_for(self.context.pipeline.drain(), timeout=GRACEFUL_SHUTDOWN_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            logger.warning(
                f"⚠️ In-flight work did not finish within {GRACEFUL_SHUTDOWN_TIMEOUT_SEC:.0f}s - "
                f"proceeding with shutdown"
            )

        self._log_final_stats()
        await self._send_message(self._summary_message())

        for resource in self.context.closeables:
            try:
                await resource.close()
            except Exception as e:
                logger.error(f"Error closing {type(resource).__name__}: {e}")

        logger.info("Bot shutdown complete")

    # ========================================================================
    # DETECTION CYCLE
    # ========================================================================

    async def run_cycle(self) -> bool:
        """
        Run one detection cycle unless one is already running.

        Returns:
            False if the cycle was skipped because another holds the lock
        """
        if self._cycle_lock.locked():
            self.cycles_skipped += 1
            return False

        async with self._cycle_lock:
            try:
                await self._run_cycle_locked()
                self.consecutive_errors = 0
            except Exception as e:
                self.cycle_errors += 1
                self.consecutive_errors += 1
                log_error_with_context(
                    logger, "Detection cycle failed", e,
                    cycle=self.cycles_run, consecutive_errors=self.consecutive_errors
                )
                if self.consecutive_errors >= MAX_CONSECUTIVE_CYCLE_ERRORS and not self.context.risk_manager.emergency_stopped:
                    logger.critical(f"Maximum consecutive cycle errors ({MAX_CONSECUTIVE_CYCLE_ERRORS}) reached")
                    self.context.risk_manager.emergency_stop()
        return True

    async def _run_cycle_locked(self) -> None:
        ctx = self.context
        self.cycles_run += 1

        markets = await ctx.feed.fetch_markets()
        if not markets:
            logger.info("No markets fetched, skipping cycle")
            return

        result = await ctx.engine.detect(markets)
        self._mark_positions(markets)

        if result.total_opportunities:
            logger.info(
                f"Found {result.total_opportunities} opportunities ({len(result.new_opportunities)} new) - "
                + ", ".join(f"{k}: {v}" for k, v in result.by_type.items() if v)
            )

        for opportunity in result.new_opportunities:
            self.opportunities_found += 1
            await self._save_opportunity(opportunity)
            await self._notify_opportunity(opportunity)

        for opportunity in result.new_opportunities:
            tracked = ctx.engine.get_tracked(opportunity.dedup_key())
            if tracked is not None and tracked.executed:
                continue
            self.executions_attempted += 1
            execution = await ctx.pipeline.process(opportunity)
            if execution is not None:
                ctx.engine.mark_executed(opportunity)

        await ctx.engine.expire_old_opportunities()

        if self.cycles_run % self.settings.status_report_every_cycles == 0:
            self._log_status()
        if self.cycles_run % self.settings.resolution_check_every_cycles == 0:
            await self.check_resolutions()

    def _mark_positions(self, markets: List[MarketSnapshot]) -> None:
        prices = {m.id: m.yes_price for m in markets if m.yes_price is not None}
        self.context.risk_manager.mark_to_market(prices)

    async def _save_opportunity(self, opportunity: Opportunity) -> None:
        try:
            opportunity.id = await self.context.repository.save_opportunity(opportunity)
        except Exception as e:
            log_error_with_context(
                logger, "Failed to save opportunity", e,
                opportunity_key=opportunity.dedup_key()
            )

    async def _notify_opportunity(self, opportunity: Opportunity) -> None:
        logger.info(f"📊 {opportunity.summary()}")
        try:
            await self.context.notifier.send_opportunity(opportunity)
        except Exception as e:
            log_error_with_context(
                logger, "Failed to send opportunity alert", e,
                opportunity_key=opportunity.dedup_key()
            )

    async def _send_message(self, text: str) -> None:
        try:
            await self.context.notifier.send_message(text)
        except Exception as e:
            log_error_with_context(logger, "Failed to send notification", e)

    async def check_resolutions(self) -> int:
        """Settle open positions whose markets have resolved; returns how many"""
        settled = 0
        for position in self.context.risk_manager.get_positions():
            try:
                payout = await self.context.resolution_source.get_resolution(position.market_id)
            except ArbitrageBotError as e:
                log_error_with_context(logger, "Resolution lookup failed", e, market_id=position.market_id)
                continue

            if payout is not None and self.context.risk_manager.settle_position(position.market_id, payout) is not None:
                settled += 1

        self.positions_settled += settled
        return settled

    # ========================================================================
    # STATUS
    # ========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'cycles_run': self.cycles_run,
            'cycles_skipped': self.cycles_skipped,
            'cycle_errors': self.cycle_errors,
            'opportunities_found': self.opportunities_found,
            'executions_attempted': self.executions_attempted,
            'positions_settled': self.positions_settled,
            'engine': self.context.engine.get_stats(),
            'risk': self.context.risk_manager.get_state(),
            'executor': self.context.executor.get_stats(),
            'pipeline': self.context.pipeline.get_stats(),
        }

    def _log_status(self) -> None:
        stats = self.context.executor.get_stats()
        pnl = self.context.executor.get_pnl()
        risk = self.context.risk_manager.get_state()
        logger.info(
            f"\n📈 Simulation Status:\n"
            f"   Balance: ${stats['balance']:,.2f} | P&L: ${pnl['absolute']:+,.2f} ({pnl['percent']:+.2f}%)\n"
            f"   Trades: {stats['successful_trades']}/{stats['total_trades']} ({stats['win_rate']:.0f}% win rate)\n"
            f"   Exposure: ${risk['total_exposure']:,.2f} | Daily P&L: ${risk['daily_pnl']:+,.2f}\n"
            f"   Tracked Opportunities: {self.context.engine.get_stats()['tracked']}"
        )

    def _summary_message(self) -> str:
        stats = self.context.executor.get_stats()
        pnl = self.context.executor.get_pnl()
        lines = [
            "📊 *Paper Trading Summary*",
            "",
            f"💰 Balance: ${stats['balance']:,.2f}",
            f"📈 P&L: ${pnl['absolute']:+,.2f} ({pnl['percent']:+.2f}%)",
            f"🎯 Trades: {stats['total_trades']} ({stats['successful_trades']} wins, {stats['failed_trades']} losses)",
            f"📊 Win Rate: {stats['win_rate']:.1f}%",
            f"📉 Max Drawdown: {stats['max_drawdown']:.2f}%",
            f"📈 Sharpe Ratio: {stats['sharpe_ratio']:.2f}",
        ]
        if stats['by_type']:
            lines.append("")
            lines.append("*By Type:*")
            for name, data in stats['by_type'].items():
                lines.append(f"• {name}: {data['trades']} trades, ${data['profit']:+.2f}, {data['win_rate']:.0f}% win")
        return "\n".join(lines)

    def _log_final_stats(self) -> None:
        """Log final statistics on shutdown"""
        runtime = datetime.now() - self.start_time if self.start_time else None
        stats = self.context.executor.get_stats()

        logger.info("=" * 80)
        logger.info("ENGINE FINAL STATISTICS")
        logger.info("=" * 80)
        if runtime is not None:
            logger.info(f"Runtime: {runtime}")
        logger.info(f"Detection Cycles: {self.cycles_run} (skipped {self.cycles_skipped}, errors {self.cycle_errors})")
        logger.info(f"Opportunities Found: {self.opportunities_found}")
        logger.info(f"Executions: {stats['successful_trades']}/{self.executions_attempted}")
        logger.info(f"Starting Balance: ${stats['starting_balance']:,.2f}")
        logger.info(f"Final Balance: ${stats['balance']:,.2f}")
        logger.info(f"Net Profit: ${stats['net_profit']:+,.2f}")
        logger.info(f"Settlement P&L: ${self.context.risk_manager.settlement_pnl:+,.2f}")
        logger.info("=" * 80)


async def main():
    """Main entry point"""
    try:
        setup_logging()

        logger.info("Starting Prediction-Market Arbitrage Engine...")

        settings = get_settings()
        settings.validate_prerequisites()
        context = ArbitrageContext.build(settings)
        bot = ArbitrageBot(context)
        bot.install_signal_handlers()
        await bot.initialize()

        # Runs until a shutdown signal arrives
        await bot.start()

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)
    except ArbitrageBotError as e:
        logger.error(f"Engine error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


def cli():
    """Console-script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")


if __name__ == "__main__":
    cli()
