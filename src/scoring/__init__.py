"""
Neighbor aggregation and heuristic ICU risk scoring.
"""

from .aggregator import NeighborAggregator, NeighborSummary
from .risk_scorer import NormalizationConstants, RiskScorer, component

__all__ = [
    'NeighborAggregator',
    'NeighborSummary',
    'NormalizationConstants',
    'RiskScorer',
    'component'
]
