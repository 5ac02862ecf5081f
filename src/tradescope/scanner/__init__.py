"""Opportunity scoring and the market data scheduler."""

from tradescope.scanner.scheduler import MarketDataScheduler
from tradescope.scanner.scorer import OpportunityScorer

__all__ = ["MarketDataScheduler", "OpportunityScorer"]
