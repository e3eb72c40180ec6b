"""Storage for arbitrage opportunities."""

from .base import OpportunityStore
from .db import SqliteOpportunityStore
from .memory import InMemoryOpportunityStore
from .models import ArbitrageOpportunity, OpportunityStatus, OPEN_STATUSES

__all__ = [
    'OpportunityStore',
    'SqliteOpportunityStore',
    'InMemoryOpportunityStore',
    'ArbitrageOpportunity',
    'OpportunityStatus',
    'OPEN_STATUSES',
]
