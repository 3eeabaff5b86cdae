"""
Boosted-tree ICU classifier training and evaluation.
"""

from .train_classifier import (compute_impute_values, load_model, predict_probabilities,
                               save_model, train_classifier)
from .evaluate import EvaluationReport, confusion_counts, evaluate_model, evaluate_predictions

__all__ = [
    'compute_impute_values',
    'load_model',
    'predict_probabilities',
    'save_model',
    'train_classifier',
    'EvaluationReport',
    'confusion_counts',
    'evaluate_model',
    'evaluate_predictions'
]
