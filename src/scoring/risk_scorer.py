"""
Heuristic ICU Risk Scoring.

Each retrieved neighbor contributes a component combining its normalised
creatinine, normalised WBC and its similarity to the query patient:

    component = (creatinine / max_creatinine + wbc / max_wbc + (1 - distance)) / 3

Missing lab values count as 0. Normalisation maxima are taken once over the
whole feature store; a term whose maximum is undefined or zero contributes 0.
Components are clamped to [0, 1] (a distance above 1 would otherwise push the
similarity term negative). A patient's heuristic score is the mean component
over its neighbors.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from src.config import DECISION_THRESHOLD
from src.data.stores import FeatureStore

SCORE_COLUMNS = ["patient_id", "heuristic_risk_score", "icu_flag", "neighbors_scored"]


@dataclass(frozen=True)
class NormalizationConstants:
    max_creatinine: Optional[float]
    max_wbc: Optional[float]

    @classmethod
    def from_store(cls, feature_store: FeatureStore) -> "NormalizationConstants":
        return cls(
            max_creatinine=feature_store.global_max("Creatinine"),
            max_wbc=feature_store.global_max("WBC"),
        )


def _usable(denominator: Optional[float]) -> bool:
    return denominator is not None and not np.isnan(denominator) and denominator > 0


def normalized_term(values, denominator: Optional[float]):
    """``values / denominator`` with nulls as 0; all zeros when the denominator is unusable."""
    filled = pd.Series(values, dtype="float64").fillna(0.0)
    if not _usable(denominator):
        return filled * 0.0
    return filled / denominator


def component(
    creatinine: Optional[float],
    wbc: Optional[float],
    distance: float,
    constants: NormalizationConstants
) -> float:
    """Heuristic contribution of a single neighbor."""
    terms = (
        normalized_term([creatinine], constants.max_creatinine).iloc[0]
        + normalized_term([wbc], constants.max_wbc).iloc[0]
        + (1.0 - distance)
    )
    return float(np.clip(terms / 3.0, 0.0, 1.0))


class RiskScorer:
    """
    Scores patients from their joined neighbor rows.
    """

    def __init__(
        self,
        constants: NormalizationConstants,
        decision_threshold: float = DECISION_THRESHOLD
    ):
        """
        Initialize the scorer.

        Args:
            constants: Run-wide normalisation maxima
            decision_threshold: Minimum heuristic score for ``icu_flag``
        """
        self.constants = constants
        self.decision_threshold = decision_threshold

    @classmethod
    def from_store(
        cls,
        feature_store: FeatureStore,
        decision_threshold: float = DECISION_THRESHOLD
    ) -> "RiskScorer":
        return cls(NormalizationConstants.from_store(feature_store), decision_threshold)

    def score_matches(self, joined: pd.DataFrame) -> pd.DataFrame:
        """
        Add a ``heuristic_component`` column to joined neighbor rows.

        Args:
            joined: Rows with ``distance``, ``Creatinine`` and ``WBC`` columns
                    (as produced by ``NeighborAggregator.join``)
        """
        scored = joined.copy()
        creatinine_term = normalized_term(scored["Creatinine"].values, self.constants.max_creatinine)
        wbc_term = normalized_term(scored["WBC"].values, self.constants.max_wbc)
        similarity_term = 1.0 - scored["distance"].astype("float64").values

        raw = (creatinine_term.values + wbc_term.values + similarity_term) / 3.0
        scored["heuristic_component"] = np.clip(raw, 0.0, 1.0)
        return scored

    def score_patients(
        self,
        joined: pd.DataFrame,
        patient_ids: Optional[Iterable[str]] = None
    ) -> pd.DataFrame:
        """
        Patient-level heuristic scores.

        Args:
            joined: Joined neighbor rows keyed by ``query_id``
            patient_ids: Patients to report (defaults to those in ``joined``);
                         patients without neighbor rows score 0.0

        Returns:
            Frame with patient_id, heuristic_risk_score, icu_flag and
            neighbors_scored, in ``patient_ids`` order
        """
        scored = self.score_matches(joined)
        grouped = scored.groupby("query_id", sort=False)["heuristic_component"]
        result = pd.DataFrame({
            "heuristic_risk_score": grouped.mean(),
            "neighbors_scored": grouped.count(),
        })

        if patient_ids is not None:
            result = result.reindex(list(patient_ids))
        result["heuristic_risk_score"] = result["heuristic_risk_score"].fillna(0.0).astype("float64")
        result["neighbors_scored"] = result["neighbors_scored"].fillna(0).astype(np.int64)
        result["icu_flag"] = result["heuristic_risk_score"] >= self.decision_threshold

        result.index.name = "patient_id"
        return result.reset_index()[SCORE_COLUMNS]

    def score_neighbors(self, rows: List[Dict]) -> float:
        """Mean component over plain neighbor dicts (distance, Creatinine, WBC)."""
        if not rows:
            return 0.0
        values = [
            component(r.get("Creatinine"), r.get("WBC"), r["distance"], self.constants)
            for r in rows
        ]
        return float(np.mean(values))
