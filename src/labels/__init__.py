"""
Label construction for the structured-feature classifier.
"""

from .build_labels import build_labels, ground_truth_is_informative

__all__ = [
    'build_labels',
    'ground_truth_is_informative'
]
