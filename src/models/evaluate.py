"""
Classifier evaluation.

Confusion counts at a fixed decision threshold against ICU ground truth, and
the broader sklearn metric set for a fitted model. Rows without ground truth
are excluded, never counted in any bucket.
"""

from dataclasses import dataclass, asdict
from typing import Dict

import numpy as np
import pandas as pd
from sklearn.metrics import (accuracy_score, confusion_matrix, f1_score, log_loss,
                             precision_score, recall_score, roc_auc_score)

from src.config import EVAL_THRESHOLD, GROUND_TRUTH_FIELD
from src.data.stores import FeatureStore


@dataclass(frozen=True)
class EvaluationReport:
    total_eval: int
    true_positives: int
    false_negatives: int
    false_positives: int
    true_negatives: int

    def to_dict(self) -> Dict:
        return asdict(self)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_dict()])


def _evaluation_rows(predictions: pd.DataFrame, feature_store: FeatureStore) -> pd.DataFrame:
    truth = feature_store.frame[["patient_id", GROUND_TRUTH_FIELD]]
    rows = truth.merge(
        predictions[["patient_id", "predicted_probability"]].astype({"patient_id": str}),
        on="patient_id",
        how="inner",
    )
    return rows[rows[GROUND_TRUTH_FIELD].notna()]


def confusion_counts(y_true, probabilities, threshold: float = EVAL_THRESHOLD) -> EvaluationReport:
    """Confusion counts of ``probabilities >= threshold`` against ``y_true``."""
    y_true = np.asarray(y_true, dtype=int)
    y_pred = (np.asarray(probabilities, dtype=float) >= threshold).astype(int)
    if len(y_true) == 0:
        return EvaluationReport(0, 0, 0, 0, 0)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return EvaluationReport(
        total_eval=int(len(y_true)),
        true_positives=int(tp),
        false_negatives=int(fn),
        false_positives=int(fp),
        true_negatives=int(tn),
    )


def evaluate_predictions(
    predictions: pd.DataFrame,
    feature_store: FeatureStore,
    threshold: float = EVAL_THRESHOLD
) -> EvaluationReport:
    """
    Compare stored predictions with ground truth.

    Args:
        predictions: Frame with patient_id and predicted_probability
        feature_store: Source of icu_admit ground truth
        threshold: Positive-class decision threshold

    Returns:
        EvaluationReport over patients with non-null ground truth
    """
    rows = _evaluation_rows(predictions, feature_store)
    return confusion_counts(
        rows[GROUND_TRUTH_FIELD].astype(bool).values,
        rows["predicted_probability"].values,
        threshold,
    )


def evaluate_model(
    model,
    X: pd.DataFrame,
    y,
    threshold: float = EVAL_THRESHOLD
) -> Dict[str, float]:
    """
    Standard binary metrics for a fitted classifier.

    ROC AUC is reported only when both classes are present.
    """
    y = np.asarray(y, dtype=int)
    if len(y) == 0:
        return {}
    prob = model.predict_proba(X)[:, 1]
    pred = (prob >= threshold).astype(int)
    metrics = {
        'precision': precision_score(y, pred, zero_division=0),
        'recall': recall_score(y, pred, zero_division=0),
        'accuracy': accuracy_score(y, pred),
        'f1_score': f1_score(y, pred, zero_division=0),
        'log_loss': log_loss(y, prob, labels=[0, 1]),
    }
    if len(np.unique(y)) == 2:
        metrics['roc_auc'] = roc_auc_score(y, prob)
    return {name: float(value) for name, value in metrics.items()}
