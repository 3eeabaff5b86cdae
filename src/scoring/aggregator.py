"""
Neighbor Lab Aggregation.

LEFT-joins ranked neighbor lists with the feature store and summarises the
neighbors' lab values. Means skip nulls in both numerator and count; a field
with no non-null neighbor value aggregates to null.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.config import LAB_FIELDS
from src.data.stores import FeatureStore
from src.search.nearest_neighbors import NeighborMatch, matches_to_frame

AVG_COLUMNS = {field: f"{field}_avg" for field in LAB_FIELDS}


@dataclass
class NeighborSummary:
    query_id: Optional[str]
    neighbor_ids: List[str]
    WBC_avg: Optional[float]
    Hemoglobin_avg: Optional[float]
    Creatinine_avg: Optional[float]
    neighbor_count: int
    neighbors_considered: int

    def to_dict(self) -> Dict:
        return asdict(self)


def _none_if_nan(value) -> Optional[float]:
    return None if pd.isna(value) else float(value)


class NeighborAggregator:
    """
    Summarises the lab values of a patient's nearest neighbors.
    """

    def __init__(self, feature_store: FeatureStore):
        self.feature_store = feature_store
        self._features = (
            feature_store.frame[["patient_id"] + LAB_FIELDS]
            .rename(columns={"patient_id": "neighbor_id"})
        )

    def join(self, matches: pd.DataFrame) -> pd.DataFrame:
        """
        LEFT join neighbor rows with their lab values.

        Args:
            matches: Frame with ``query_id``, ``neighbor_id`` and ``distance``

        Returns:
            The match rows (order preserved) plus lab columns and a boolean
            ``has_features`` marking neighbors found in the feature store
        """
        joined = matches.merge(self._features, on="neighbor_id", how="left", indicator=True)
        joined["has_features"] = joined["_merge"] == "both"
        return joined.drop(columns="_merge")

    def aggregate(self, matches: Sequence[NeighborMatch]) -> NeighborSummary:
        """Summarise one ranked neighbor list."""
        query_id = matches[0].query_id if matches else None
        key = "" if query_id is None else query_id
        row = self.aggregate_batch({key: list(matches)}).iloc[0]
        return NeighborSummary(
            query_id=query_id,
            neighbor_ids=[m.neighbor_id for m in matches],
            WBC_avg=_none_if_nan(row["WBC_avg"]),
            Hemoglobin_avg=_none_if_nan(row["Hemoglobin_avg"]),
            Creatinine_avg=_none_if_nan(row["Creatinine_avg"]),
            neighbor_count=int(row["neighbor_count"]),
            neighbors_considered=int(row["neighbors_considered"]),
        )

    def aggregate_batch(self, results: Dict[str, List[NeighborMatch]]) -> pd.DataFrame:
        """
        Summarise every query of a batch.

        Returns:
            One row per query id (input order) with ``<field>_avg`` columns,
            ``neighbor_count`` and ``neighbors_considered``; queries without
            neighbors get null averages and zero counts
        """
        query_ids = list(results.keys())
        joined = self.join(matches_to_frame(results))
        grouped = joined.groupby("query_id", sort=False, dropna=False)

        summary = grouped[LAB_FIELDS].mean().rename(columns=AVG_COLUMNS)
        summary["neighbor_count"] = grouped["has_features"].sum()
        summary["neighbors_considered"] = grouped["neighbor_id"].count()
        summary = summary.reindex(query_ids)

        summary["neighbor_count"] = summary["neighbor_count"].fillna(0).astype(np.int64)
        summary["neighbors_considered"] = summary["neighbors_considered"].fillna(0).astype(np.int64)
        summary.index.name = "query_id"
        return summary.reset_index()
