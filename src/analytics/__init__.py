"""
Exploratory analytics over patient embedding neighborhoods.
"""

from .neighbor_patterns import distance_distribution, neighbor_context, rare_pattern_clusters

__all__ = [
    'distance_distribution',
    'neighbor_context',
    'rare_pattern_clusters'
]
