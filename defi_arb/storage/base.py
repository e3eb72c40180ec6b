"""Opportunity store interface."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any

from .models import ArbitrageOpportunity, OpportunityStatus


class OpportunityStore(ABC):
    """Persistence for arbitrage opportunities.

    ``compare_and_set_status`` must be atomic: of two concurrent callers
    expecting the same status, exactly one succeeds.
    """

    @abstractmethod
    async def get_opportunity(self, opportunity_id: int) -> Optional[ArbitrageOpportunity]:
        """Get an opportunity by id."""
        pass

    @abstractmethod
    async def list_opportunities(self, active_only: bool = False) -> List[ArbitrageOpportunity]:
        """List opportunities, newest first."""
        pass

    @abstractmethod
    async def create_opportunity(self, opportunity: ArbitrageOpportunity) -> ArbitrageOpportunity:
        """Insert an opportunity and return it with its id assigned."""
        pass

    @abstractmethod
    async def update_opportunity(self, opportunity_id: int, fields: Dict[str, Any]) -> Optional[ArbitrageOpportunity]:
        """Update fields of an opportunity; returns None if it does not exist."""
        pass

    @abstractmethod
    async def compare_and_set_status(self, opportunity_id: int, expected: OpportunityStatus,
                                     new: OpportunityStatus, fields: Optional[Dict[str, Any]] = None) -> bool:
        """Move to ``new`` only if the current status is ``expected``."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass
