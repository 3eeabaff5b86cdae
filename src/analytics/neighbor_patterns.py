"""
Neighbor Analytics.

Exploratory views over the embedding neighborhood of patients:
- the multimodal context of one query patient (neighbors, their notes and
  labs, neighborhood averages, optional advisory answers)
- the distance distribution of a query's nearest neighbors
- neighbor clusters around patients with a rare lab pattern
"""

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from src.alerts.advisory import SafeAdvisor
from src.alerts.alert_generator import select_query_patients
from src.config import CREATININE_THRESHOLD, LAB_FIELDS
from src.data.stores import EmbeddingStore, FeatureStore
from src.scoring.aggregator import NeighborAggregator
from src.search.nearest_neighbors import NearestNeighborSearch, matches_to_frame

logger = logging.getLogger(__name__)

CONTEXT_COLUMNS = [
    'patient_id', 'combined_text', 'WBC', 'Hemoglobin', 'Creatinine',
    'neighbor_WBC_avg', 'neighbor_Hb_avg', 'neighbor_Creatinine_avg',
    'neighbor_count', 'distance'
]
ADVISORY_COLUMNS = ['needs_icu_bool', 'ai_icu_risk_score', 'clinical_summary']


def neighbor_context(
    search: NearestNeighborSearch,
    embedding_store: EmbeddingStore,
    feature_store: FeatureStore,
    patient_id: str,
    k: int = 10,
    advisor: Optional[SafeAdvisor] = None
) -> pd.DataFrame:
    """
    Neighbors of one patient with their notes and labs.

    Args:
        search: Built search over ``embedding_store``
        embedding_store: Source of the query vector and neighbor notes
        feature_store: Lab values
        patient_id: Query patient
        k: Number of neighbors
        advisor: When given, adds needs_icu_bool, ai_icu_risk_score and
                 clinical_summary per neighbor (null on service failure)

    Returns:
        One row per neighbor, ascending distance; every row carries the same
        neighborhood averages and neighbor count
    """
    matches = search.query(embedding_store.vector(patient_id), k, query_id=patient_id)
    aggregator = NeighborAggregator(feature_store)
    summary = aggregator.aggregate(matches)

    rows = aggregator.join(matches_to_frame({str(patient_id): matches}))
    rows = rows.rename(columns={'neighbor_id': 'patient_id'})
    rows['combined_text'] = rows['patient_id'].map(embedding_store.note)
    rows['neighbor_WBC_avg'] = summary.WBC_avg
    rows['neighbor_Hb_avg'] = summary.Hemoglobin_avg
    rows['neighbor_Creatinine_avg'] = summary.Creatinine_avg
    rows['neighbor_count'] = summary.neighbor_count
    context = rows[CONTEXT_COLUMNS].reset_index(drop=True)

    if advisor is not None:
        answers = []
        for row in context.itertuples(index=False):
            labs = {field: (None if pd.isna(getattr(row, field)) else float(getattr(row, field)))
                    for field in LAB_FIELDS}
            answers.append({
                'needs_icu_bool': advisor.needs_icu(row.combined_text, labs),
                'ai_icu_risk_score': advisor.risk_score(row.combined_text, labs),
                'clinical_summary': advisor.summary(row.combined_text, labs),
            })
        context = pd.concat(
            [context, pd.DataFrame(answers, columns=ADVISORY_COLUMNS)], axis=1
        )

    return context


def distance_distribution(
    search: NearestNeighborSearch,
    vector,
    k: int = 100
) -> Dict:
    """
    Summary of the distances to the ``k`` nearest neighbors.

    Returns:
        neighbors_considered, min_distance, quintile_distances (six cut
        points from min to max) and max_distance; distances are None when
        there are no neighbors
    """
    distances = np.array([m.distance for m in search.query(vector, k)], dtype=float)
    if len(distances) == 0:
        return {
            'neighbors_considered': 0,
            'min_distance': None,
            'quintile_distances': [],
            'max_distance': None,
        }
    return {
        'neighbors_considered': int(len(distances)),
        'min_distance': float(distances.min()),
        'quintile_distances': [float(q) for q in np.quantile(distances, np.linspace(0, 1, 6))],
        'max_distance': float(distances.max()),
    }


def rare_pattern_clusters(
    search: NearestNeighborSearch,
    embedding_store: EmbeddingStore,
    feature_store: FeatureStore,
    creatinine_threshold: float = CREATININE_THRESHOLD,
    anchor_limit: int = 5,
    k: int = 50,
    selection_policy: str = 'fixed',
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Neighborhoods around patients with high creatinine.

    Anchors are patients with Creatinine above ``creatinine_threshold`` that
    also have an embedding, capped at ``anchor_limit``.

    Returns:
        anchor_id, neighbor_count (distinct neighbors) and closest distance,
        ordered by neighbor_count descending then anchor_id
    """
    features = feature_store.frame
    high = features.loc[features['Creatinine'] > creatinine_threshold, 'patient_id']
    anchors = [pid for pid in high if pid in embedding_store]
    anchors = select_query_patients(anchors, anchor_limit, selection_policy, seed=seed)

    results = search.batch_query(
        [(pid, embedding_store.vector(pid)) for pid in anchors], k
    )
    matches = matches_to_frame(results)
    if matches.empty:
        return pd.DataFrame(columns=['anchor_id', 'neighbor_count', 'closest'])

    clusters = (
        matches.groupby('query_id')
        .agg(neighbor_count=('neighbor_id', 'nunique'), closest=('distance', 'min'))
        .reset_index()
        .rename(columns={'query_id': 'anchor_id'})
        .sort_values(['neighbor_count', 'anchor_id'], ascending=[False, True], kind='mergesort')
        .reset_index(drop=True)
    )
    logger.info("Found %d rare-pattern anchors", len(clusters))
    return clusters
