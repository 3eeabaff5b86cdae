"""
Cosine nearest-neighbor retrieval over patient note embeddings.
"""

from .nearest_neighbors import NearestNeighborSearch, NeighborMatch, cosine_distances, matches_to_frame

__all__ = [
    'NearestNeighborSearch',
    'NeighborMatch',
    'cosine_distances',
    'matches_to_frame'
]
