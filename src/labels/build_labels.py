"""
Training label construction.

Ground truth is often missing or single-valued, so each patient's label is
the first non-null answer of a fixed fallback chain:

    1. own icu_admit, only when ground truth is informative globally
       (at least two distinct non-null values)
    2. heuristic_risk_score >= decision threshold
    3. Creatinine > creatinine threshold
    4. WBC > WBC threshold
    5. False

A comparison against a null value is itself null and falls through. The
chain is a pragmatic heuristic, not a validated clinical rule; its order is
kept exactly as is.
"""

import pandas as pd
from typing import Optional

from src.config import (CREATININE_THRESHOLD, DECISION_THRESHOLD, GROUND_TRUTH_FIELD,
                        WBC_THRESHOLD)
from src.data.stores import FeatureStore

LABEL_SOURCES = ["ground_truth", "heuristic", "creatinine", "wbc"]


def ground_truth_is_informative(feature_store: FeatureStore) -> bool:
    return feature_store.distinct_ground_truth() >= 2


def _nullable_greater(values: pd.Series, threshold: float) -> pd.Series:
    return values.astype("Float64") > threshold


def build_labels(
    feature_store: FeatureStore,
    heuristic_scores: Optional[pd.DataFrame] = None,
    decision_threshold: float = DECISION_THRESHOLD,
    creatinine_threshold: float = CREATININE_THRESHOLD,
    wbc_threshold: float = WBC_THRESHOLD
) -> pd.DataFrame:
    """
    Build one training label per patient in the feature store.

    Args:
        feature_store: Patients, lab values and ground truth
        heuristic_scores: Optional frame with ``patient_id`` and
                          ``heuristic_risk_score`` (e.g. the alert set);
                          patients absent from it have a null score
        decision_threshold: Heuristic score cutoff
        creatinine_threshold: Creatinine cutoff
        wbc_threshold: WBC cutoff

    Returns:
        Frame with patient_id, label (bool) and label_source
    """
    df = feature_store.frame

    if heuristic_scores is not None and len(heuristic_scores):
        scores = (
            heuristic_scores[["patient_id", "heuristic_risk_score"]]
            .assign(patient_id=lambda d: d["patient_id"].astype(str))
            .drop_duplicates("patient_id")
        )
        df = df.merge(scores, on="patient_id", how="left")
    else:
        df["heuristic_risk_score"] = float("nan")

    if ground_truth_is_informative(feature_store):
        ground_truth = df[GROUND_TRUTH_FIELD].astype("boolean")
    else:
        ground_truth = pd.Series(pd.NA, index=df.index, dtype="boolean")

    candidates = {
        "ground_truth": ground_truth,
        "heuristic": df["heuristic_risk_score"].astype("Float64") >= decision_threshold,
        "creatinine": _nullable_greater(df["Creatinine"], creatinine_threshold),
        "wbc": _nullable_greater(df["WBC"], wbc_threshold),
    }

    label = pd.Series(False, index=df.index, dtype="boolean")
    source = pd.Series("default", index=df.index, dtype="object")
    # Lowest priority first so higher-priority answers overwrite
    for name in reversed(LABEL_SOURCES):
        values = candidates[name]
        known = values.notna()
        label[known] = values[known]
        source[known] = name

    return pd.DataFrame({
        "patient_id": df["patient_id"].values,
        "label": label.astype(bool).values,
        "label_source": source.values,
    })
