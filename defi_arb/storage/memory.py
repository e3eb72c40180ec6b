"""In-memory opportunity store."""

import dataclasses
import threading
from typing import Dict, List, Optional, Any

from .base import OpportunityStore
from .models import ArbitrageOpportunity, OpportunityStatus, check_update_fields


class InMemoryOpportunityStore(OpportunityStore):
    """Opportunity store kept in a dict. Callers always receive copies."""

    def __init__(self):
        self._items: Dict[int, ArbitrageOpportunity] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    async def get_opportunity(self, opportunity_id: int) -> Optional[ArbitrageOpportunity]:
        with self._lock:
            item = self._items.get(opportunity_id)
            return dataclasses.replace(item) if item else None

    async def list_opportunities(self, active_only: bool = False) -> List[ArbitrageOpportunity]:
        with self._lock:
            items = [dataclasses.replace(o) for o in self._items.values()]
        if active_only:
            items = [o for o in items if o.is_active]
        return sorted(items, key=lambda o: (o.timestamp, o.id), reverse=True)

    async def create_opportunity(self, opportunity: ArbitrageOpportunity) -> ArbitrageOpportunity:
        with self._lock:
            stored = dataclasses.replace(opportunity, id=self._next_id)
            self._items[stored.id] = stored
            self._next_id += 1
            return dataclasses.replace(stored)

    async def update_opportunity(self, opportunity_id: int, fields: Dict[str, Any]) -> Optional[ArbitrageOpportunity]:
        check_update_fields(fields)
        with self._lock:
            item = self._items.get(opportunity_id)
            if item is None:
                return None
            updated = dataclasses.replace(item, **fields)
            self._items[opportunity_id] = updated
            return dataclasses.replace(updated)

    async def compare_and_set_status(self, opportunity_id: int, expected: OpportunityStatus,
                                     new: OpportunityStatus, fields: Optional[Dict[str, Any]] = None) -> bool:
        fields = fields or {}
        check_update_fields(fields)
        if "status" in fields:
            raise ValueError("Pass the new status as `new`, not in fields")
        with self._lock:
            item = self._items.get(opportunity_id)
            if item is None or item.status != expected:
                return False
            self._items[opportunity_id] = dataclasses.replace(item, status=new, **fields)
            return True
