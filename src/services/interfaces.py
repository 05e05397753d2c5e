"""
Collaborator Interfaces

The core talks to the outside world through four narrow interfaces. Concrete
adapters live beside this module; tests substitute fakes or AsyncMocks.
The protocols are runtime-checkable so adapter conformance can be asserted.
"""

from typing import List, Optional, Protocol, runtime_checkable

from core.execution_models import ExecutionResult
from core.models import MarketSnapshot, Opportunity, OpportunityStatus


@runtime_checkable
class MarketFeed(Protocol):
    async def fetch_markets(self) -> List[MarketSnapshot]:
        ...


@runtime_checkable
class OpportunityRepository(Protocol):
    async def save_opportunity(self, opportunity: Opportunity) -> str:
        ...

    async def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus) -> None:
        ...

    async def save_execution(self, result: ExecutionResult) -> str:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def send_opportunity(self, opportunity: Opportunity) -> None:
        ...

    async def send_execution(self, result: ExecutionResult) -> None:
        ...

    async def send_message(self, text: str) -> None:
        ...


@runtime_checkable
class ResolutionSource(Protocol):
    async def get_resolution(self, market_id: str) -> Optional[float]:
        """Final YES payout (0.0 or 1.0), or None while the market is unresolved"""
        ...
