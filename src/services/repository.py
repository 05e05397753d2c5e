"""
Opportunity & Execution Repositories

InMemoryRepository - dict-backed, the default when no path is configured
JsonlRepository    - append-only JSON-lines file; every save, status change
                     and execution becomes one record:

    {"record": "opportunity", "id": "...", "saved_at": ..., "data": {...}}
    {"record": "status", "id": "...", "status": "expired", "saved_at": ...}
    {"record": "execution", "id": "...", "saved_at": ..., "data": {...}}

File writes run in a worker thread so the event loop never blocks on disk.
Write failures surface as PersistenceError; callers log them and carry on.
"""

import asyncio
import json
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.execution_models import ExecutionResult
from core.models import Opportunity, OpportunityStatus
from utils.exceptions import PersistenceError
from utils.logger import get_logger


logger = get_logger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryRepository:
    """Keeps everything in process memory"""

    def __init__(self):
        self.opportunities: Dict[str, Opportunity] = {}
        self.statuses: Dict[str, OpportunityStatus] = {}
        self.executions: Dict[str, ExecutionResult] = {}

    async def save_opportunity(self, opportunity: Opportunity) -> str:
        opportunity_id = opportunity.id or _new_id()
        self.opportunities[opportunity_id] = opportunity
        self.statuses[opportunity_id] = opportunity.status
        return opportunity_id

    async def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus) -> None:
        if opportunity_id not in self.opportunities:
            raise PersistenceError(
                f"Unknown opportunity id: {opportunity_id}",
                details={'opportunity_id': opportunity_id, 'status': status.value}
            )
        self.statuses[opportunity_id] = status

    async def save_execution(self, result: ExecutionResult) -> str:
        self.executions[result.execution_id] = result
        return result.execution_id

    def get_status(self, opportunity_id: str) -> Optional[OpportunityStatus]:
        return self.statuses.get(opportunity_id)


class JsonlRepository:
    """Append-only JSON-lines store"""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self.records_written = 0

    def _append(self, record: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open('a', encoding='utf-8') as f:
            f.write(json.dumps(record, default=str) + '\n')

    async def _write(self, record: Dict[str, Any]) -> None:
        record['saved_at'] = time.time()
        async with self._lock:
            try:
                await asyncio.to_thread(self._append, record)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to write {record['record']} record to {self.path}",
                    details={'path': str(self.path), 'record': record['record']},
                    original_error=e
                )
        self.records_written += 1

    async def save_opportunity(self, opportunity: Opportunity) -> str:
        opportunity_id = opportunity.id or _new_id()
        data = opportunity.to_dict()
        data['id'] = opportunity_id
        await self._write({'record': 'opportunity', 'id': opportunity_id, 'data': data})
        return opportunity_id

    async def update_opportunity_status(self, opportunity_id: str, status: OpportunityStatus) -> None:
        await self._write({'record': 'status', 'id': opportunity_id, 'status': status.value})

    async def save_execution(self, result: ExecutionResult) -> str:
        await self._write({'record': 'execution', 'id': result.execution_id, 'data': result.to_dict()})
        return result.execution_id

    def read_records(self) -> List[Dict[str, Any]]:
        """Every record in file order (empty when the file does not exist yet)"""
        if not self.path.exists():
            return []
        with self.path.open('r', encoding='utf-8') as f:
            return [json.loads(line) for line in f if line.strip()]
