"""
ICU Boosted-Tree Classifier.

Structured-feature baseline: an XGBoost binary classifier on WBC, Hemoglobin
and Creatinine, trained on labels from the fallback chain. Missing lab values
are imputed with the global mean of the field (0 when the field has no values
at all); the same imputation values are stored with the model and reused at
prediction time.
"""

import logging
from pathlib import Path
from typing import Dict, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from xgboost import XGBClassifier

from src.config import LAB_FIELDS, MAX_ITERATIONS, RANDOM_SEED
from src.data.snapshots import save_artifact
from src.data.stores import FeatureStore
from src.exceptions import DegenerateLabelSetError

logger = logging.getLogger(__name__)

MODEL_FILE = "icu_xgb.pkl"
IMPUTE_FILE = "impute_values.pkl"


def compute_impute_values(feature_store: FeatureStore) -> Dict[str, float]:
    """Global mean per lab field, 0.0 where the mean is undefined."""
    values = {}
    for field in LAB_FIELDS:
        mean = feature_store.global_mean(field)
        values[field] = 0.0 if mean is None else mean
    return values


def feature_matrix(frame: pd.DataFrame, impute_values: Dict[str, float]) -> pd.DataFrame:
    """Lab columns in model order with nulls replaced by ``impute_values``."""
    return frame[LAB_FIELDS].astype("float64").fillna(impute_values)


def build_training_frame(
    feature_store: FeatureStore,
    labels: pd.DataFrame,
    impute_values: Dict[str, float]
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Join imputed features with labels.

    Returns:
        (X, y) aligned on patient_id, in feature-store order
    """
    frame = feature_store.frame.merge(
        labels[["patient_id", "label"]], on="patient_id", how="inner"
    )
    X = feature_matrix(frame, impute_values)
    y = frame["label"].astype(int).values
    return X, y


def train_classifier(
    feature_store: FeatureStore,
    labels: pd.DataFrame,
    max_iterations: int = MAX_ITERATIONS,
    seed: int = RANDOM_SEED
) -> Tuple[XGBClassifier, Dict[str, float]]:
    """
    Fit the boosted-tree classifier.

    Args:
        feature_store: Source of lab features
        labels: Frame with patient_id and boolean label
        max_iterations: Number of boosting rounds
        seed: Random state for reproducible fits

    Returns:
        (fitted model, imputation values)

    Raises:
        DegenerateLabelSetError: if the labels hold a single class
    """
    impute_values = compute_impute_values(feature_store)
    X, y = build_training_frame(feature_store, labels, impute_values)

    classes = np.unique(y)
    if len(classes) < 2:
        raise DegenerateLabelSetError(
            f"Training labels contain only class {classes.tolist()} "
            f"across {len(y)} patients"
        )

    model = XGBClassifier(
        n_estimators=max_iterations,
        random_state=seed,
        eval_metric='logloss',
        n_jobs=1
    )
    model.fit(X, y)

    logger.info(
        "Trained XGBoost on %d patients (%d positive, %d rounds)",
        len(y), int(y.sum()), max_iterations
    )
    return model, impute_values


def predict_probabilities(
    model: XGBClassifier,
    feature_store: FeatureStore,
    impute_values: Dict[str, float]
) -> pd.DataFrame:
    """
    Positive-class probability for every patient in the store.

    Returns:
        Frame with patient_id and predicted_probability
    """
    frame = feature_store.frame
    X = feature_matrix(frame, impute_values)
    probs = model.predict_proba(X)[:, 1] if len(X) else np.empty(0)
    return pd.DataFrame({
        'patient_id': frame['patient_id'].values,
        'predicted_probability': np.clip(probs.astype('float64'), 0.0, 1.0),
    })


def save_model(
    model: XGBClassifier,
    impute_values: Dict[str, float],
    output_dir: Union[str, Path]
) -> Path:
    output_dir = Path(output_dir)
    save_artifact(model, output_dir / MODEL_FILE)
    save_artifact(impute_values, output_dir / IMPUTE_FILE)
    return output_dir / MODEL_FILE


def load_model(output_dir: Union[str, Path]) -> Tuple[XGBClassifier, Dict[str, float]]:
    output_dir = Path(output_dir)
    return joblib.load(output_dir / MODEL_FILE), joblib.load(output_dir / IMPUTE_FILE)
