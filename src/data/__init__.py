"""
Input stores for the ICU risk pipeline.
"""

from .stores import EmbeddingStore, FeatureStore, coerce_bool, coerce_numeric, parse_vector

__all__ = [
    'EmbeddingStore',
    'FeatureStore',
    'coerce_bool',
    'coerce_numeric',
    'parse_vector'
]
