"""
Notification Channels

LogNotifier      - writes alerts to the application log (always available)
TelegramNotifier - Telegram Bot API `sendMessage` over aiohttp, Markdown mode

Delivery failures raise NotificationError; the orchestrator logs them and
moves on. A notification never feeds back into trading state.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from config.constants import API_TIMEOUT_SEC
from core.execution_models import ExecutionResult
from core.models import (
    MultiOutcomeOpportunity,
    NegRiskOpportunity,
    Opportunity,
    OpportunityType,
    PairwiseOpportunity,
)
from utils.exceptions import NotificationError
from utils.logger import get_logger


logger = get_logger(__name__)


TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_CHARS = 4096

_TYPE_EMOJI = {
    OpportunityType.MULTI_OUTCOME: '🔄',
    OpportunityType.NEGRISK: '🎯',
    OpportunityType.CROSS_MARKET: '↔️',
    OpportunityType.RELATED_MARKET: '🔗',
    OpportunityType.SEMANTIC_DEPENDENCY: '🧠',
}

_TYPE_LABEL = {
    OpportunityType.MULTI_OUTCOME: 'Multi-Outcome Spread',
    OpportunityType.NEGRISK: 'NegRisk Rebalancing',
    OpportunityType.CROSS_MARKET: 'Cross-Market',
    OpportunityType.RELATED_MARKET: 'Related Market',
    OpportunityType.SEMANTIC_DEPENDENCY: 'Semantic Dependency',
}


# ============================================================================
# MESSAGE FORMATTING
# ============================================================================

def format_opportunity_message(opportunity: Opportunity) -> str:
    kind = opportunity.opportunity_type
    lines = [
        f"{_TYPE_EMOJI[kind]} *{_TYPE_LABEL[kind]} Opportunity*",
        "",
        f"💰 Profit: *{opportunity.profit_percent:.2f}%*",
        f"📊 Confidence: {opportunity.confidence_score * 100:.0f}%",
        "",
    ]

    if isinstance(opportunity, NegRiskOpportunity):
        lines.append(f"📋 *Event:* {opportunity.event_title[:80]}")
        lines.append(
            f"Outcomes: {opportunity.condition_count} | YES sum: {opportunity.total_yes_price_sum * 100:.1f}% "
            f"({opportunity.direction.value})"
        )
        lines.append(f"Min Liq: ${opportunity.min_condition_liquidity / 1000:.1f}k")
    else:
        lines.append("📈 *Market 1:*")
        lines.append(opportunity.market1_question[:80])
        lines.append(
            f"Price: {opportunity.market1_price * 100:.1f}% | Liq: ${opportunity.market1_liquidity / 1000:.1f}k"
        )

    if isinstance(opportunity, PairwiseOpportunity):
        lines.append("")
        lines.append("📉 *Market 2:*")
        lines.append(opportunity.market2_question[:80])
        lines.append(
            f"Price: {opportunity.market2_price * 100:.1f}% | Liq: ${opportunity.market2_liquidity / 1000:.1f}k"
        )

    if isinstance(opportunity, MultiOutcomeOpportunity):
        lines.append("")
        lines.append(f"📋 Sum: {opportunity.price_sum * 100:.1f}% ({opportunity.direction.value})")

    lines.append("")
    lines.append(f"➡️ {opportunity.recommended_action()['description']}")
    return "\n".join(lines)


def format_execution_message(result: ExecutionResult) -> str:
    icon = '✅' if result.success else '❌'
    lines = [
        f"{_TYPE_EMOJI[result.opportunity_type]} *Paper Trade* ({result.opportunity_type.value.upper()})",
        "",
        f"Position: ${result.total_size:,.2f} ({result.kelly_fraction * 100:.1f}% Kelly)",
        f"{icon} *Result:* {'SUCCESS' if result.success else 'FAILED'}",
        f"Expected: ${result.expected_profit:+.4f}",
        f"Realized: ${result.realized_profit:+.4f}",
    ]
    slippage = sum(leg.slippage_bps for leg in result.legs)
    lines.append(f"Slippage: {slippage:.1f} bps")
    if result.failure_reason:
        lines.append(f"Reason: {result.failure_reason}")
    lines.append("")
    lines.append(f"💰 *Balance:* ${result.bankroll_after:,.2f}")
    return "\n".join(lines)


# ============================================================================
# CHANNELS
# ============================================================================

class LogNotifier:
    """Notifier that only logs"""

    def __init__(self):
        self.sent = 0

    async def send_opportunity(self, opportunity: Opportunity) -> None:
        self.sent += 1
        logger.info(f"\n{format_opportunity_message(opportunity)}")

    async def send_execution(self, result: ExecutionResult) -> None:
        self.sent += 1
        logger.info(f"\n{format_execution_message(result)}")

    async def send_message(self, text: str) -> None:
        self.sent += 1
        logger.info(text)


class TelegramNotifier:
    """Telegram Bot API notifier"""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_base: str = TELEGRAM_API_BASE,
    ):
        if not bot_token or not chat_id:
            raise NotificationError(
                "Telegram notifier requires both a bot token and a chat id",
                error_code='MISSING_TELEGRAM_CREDENTIALS'
            )
        self.chat_id = chat_id
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self._session = session
        self._owns_session = session is None

        self.messages_sent = 0
        self.messages_failed = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=API_TIMEOUT_SEC))
            self._owns_session = True
        return self._session

    async def send_message(self, text: str) -> None:
        payload: Dict[str, Any] = {
            'chat_id': self.chat_id,
            'text': text[:TELEGRAM_MAX_MESSAGE_CHARS],
            'parse_mode': 'Markdown',
            'disable_web_page_preview': True,
        }
        session = await self._get_session()

        try:
            async with session.post(self._url, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    self.messages_failed += 1
                    raise NotificationError(
                        f"Telegram sendMessage failed: HTTP {response.status}",
                        details={'status': response.status, 'body': body[:200]}
                    )
        except asyncio.TimeoutError as e:
            self.messages_failed += 1
            raise NotificationError("Telegram sendMessage timed out", original_error=e)
        except aiohttp.ClientError as e:
            self.messages_failed += 1
            raise NotificationError(f"Telegram transport error: {e}", original_error=e)

        self.messages_sent += 1

    async def send_opportunity(self, opportunity: Opportunity) -> None:
        await self.send_message(format_opportunity_message(opportunity))

    async def send_execution(self, result: ExecutionResult) -> None:
        await self.send_message(format_execution_message(result))

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Closed Telegram aiohttp session")
