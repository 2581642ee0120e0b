"""
Conversation Engine - Entity Repository
=======================================

The record-store contract entity skills depend on, plus an in-process
implementation used in mock mode and tests.

Every operation returns a CRUDResult envelope. `search` is optional: check
with `is_searchable(repo)` before calling it.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from conversation_engine.models import CRUDResult, utc_now_iso

logger = logging.getLogger(__name__)


class EntityRepository(ABC):
    """CRUD capability for one entity type, scoped by owner id."""

    @abstractmethod
    async def create(self, data: Dict[str, Any]) -> CRUDResult: ...

    @abstractmethod
    async def read(self, entity_id: str, owner_id: Optional[str], include_relations: bool = False) -> CRUDResult: ...

    @abstractmethod
    async def find_many(self, owner_id: Optional[str], page: int = 1, limit: int = 20) -> CRUDResult: ...

    @abstractmethod
    async def update(self, entity_id: str, owner_id: Optional[str], data: Dict[str, Any]) -> CRUDResult: ...

    @abstractmethod
    async def delete(self, entity_id: str, owner_id: Optional[str]) -> CRUDResult: ...


def is_searchable(repository: Any) -> bool:
    """Capability test: does the repository expose a callable `search`?"""
    return callable(getattr(repository, "search", None))


class InMemoryRepository(EntityRepository):
    """Dict-backed repository with substring search. Newest records first."""

    def __init__(self, entity_name: str = "Entity"):
        self.entity_name = entity_name
        self._records: Dict[str, Dict[str, Any]] = {}

    async def create(self, data: Dict[str, Any]) -> CRUDResult:
        now = utc_now_iso()
        record = {**data, "id": uuid.uuid4().hex, "created_at": now, "updated_at": now}
        self._records[record["id"]] = record
        logger.info(f"[InMemoryRepository:{self.entity_name}] Created {record['id']}")
        return CRUDResult(success=True, data=dict(record))

    async def read(self, entity_id: str, owner_id: Optional[str], include_relations: bool = False) -> CRUDResult:
        record = self._owned(entity_id, owner_id)
        if record is None:
            return CRUDResult(success=False, error=f"{self.entity_name} not found")
        return CRUDResult(success=True, data=dict(record))

    async def find_many(self, owner_id: Optional[str], page: int = 1, limit: int = 20) -> CRUDResult:
        records = self._for_owner(owner_id)
        return CRUDResult(success=True, data=self._page(records, page, limit), count=len(records))

    async def update(self, entity_id: str, owner_id: Optional[str], data: Dict[str, Any]) -> CRUDResult:
        record = self._owned(entity_id, owner_id)
        if record is None:
            return CRUDResult(success=False, error=f"{self.entity_name} not found")
        protected = {"id", "created_at", "user_id"}
        record.update({k: v for k, v in data.items() if k not in protected})
        record["updated_at"] = utc_now_iso()
        return CRUDResult(success=True, data=dict(record))

    async def delete(self, entity_id: str, owner_id: Optional[str]) -> CRUDResult:
        if self._owned(entity_id, owner_id) is None:
            return CRUDResult(success=False, error=f"{self.entity_name} not found")
        del self._records[entity_id]
        logger.info(f"[InMemoryRepository:{self.entity_name}] Deleted {entity_id}")
        return CRUDResult(success=True)

    async def search(self, owner_id: Optional[str], query: str, page: int = 1, limit: int = 20) -> CRUDResult:
        needle = query.lower()
        matches = [
            r for r in self._for_owner(owner_id)
            if any(isinstance(v, str) and needle in v.lower() for k, v in r.items() if k != "id")
        ]
        return CRUDResult(success=True, data=self._page(matches, page, limit), count=len(matches))

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _owned(self, entity_id: str, owner_id: Optional[str]) -> Optional[Dict[str, Any]]:
        record = self._records.get(entity_id)
        if record is None:
            return None
        if owner_id is not None and record.get("user_id") not in (None, owner_id):
            return None
        return record

    def _for_owner(self, owner_id: Optional[str]) -> List[Dict[str, Any]]:
        records = [
            r for r in self._records.values()
            if owner_id is None or r.get("user_id") in (None, owner_id)
        ]
        return list(reversed(records))

    @staticmethod
    def _page(records: List[Dict[str, Any]], page: int, limit: int) -> List[Dict[str, Any]]:
        start = max(page - 1, 0) * limit
        return [dict(r) for r in records[start:start + limit]]
