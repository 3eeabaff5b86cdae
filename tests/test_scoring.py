"""
test_scoring.py
Validates neighbor lab aggregation and the heuristic risk score.
"""
import numpy as np
import pandas as pd
import pytest

from src.data.stores import FeatureStore
from src.scoring.aggregator import NeighborAggregator
from src.scoring.risk_scorer import NormalizationConstants, RiskScorer, component
from src.search.nearest_neighbors import NeighborMatch


def _features(rows):
    return FeatureStore.from_frame(pd.DataFrame(
        rows, columns=['patient_id', 'WBC', 'Hemoglobin', 'Creatinine', 'icu_admit']
    ))


def _matches(query_id, pairs):
    return pd.DataFrame({
        'query_id': [query_id] * len(pairs),
        'neighbor_id': [n for n, _ in pairs],
        'distance': [d for _, d in pairs],
    })


def test_single_neighbor_score():
    features = _features([
        ('N1', 10.0, 13.0, 2.0, None),
        ('MAX', 20.0, 12.0, 4.0, None),
    ])
    aggregator = NeighborAggregator(features)
    scorer = RiskScorer.from_store(features, decision_threshold=0.5)

    # ── 1. Normalisation maxima come from the whole store ───────────────────
    assert scorer.constants == NormalizationConstants(max_creatinine=4.0, max_wbc=20.0)

    # ── 2. (0.5 + 0.5 + 0.8) / 3 = 0.6 for the sole neighbor ────────────────
    joined = aggregator.join(_matches('Q', [('N1', 0.2)]))
    scores = scorer.score_patients(joined)
    assert scores['patient_id'].tolist() == ['Q']
    assert scores.loc[0, 'heuristic_risk_score'] == pytest.approx(0.6)
    assert bool(scores.loc[0, 'icu_flag']) is True
    assert scores.loc[0, 'neighbors_scored'] == 1

    assert component(2.0, 10.0, 0.2, scorer.constants) == pytest.approx(0.6)
    assert scorer.score_neighbors([{'distance': 0.2, 'Creatinine': 2.0, 'WBC': 10.0}]) == pytest.approx(0.6)


def test_null_labs_score():
    features = _features([
        ('N1', None, 11.0, None, None),
        ('N2', None, 12.0, None, None),
        ('M', 15.0, 14.0, 3.0, None),
    ])
    aggregator = NeighborAggregator(features)
    scorer = RiskScorer.from_store(features)

    # ── 1. Null labs count as 0: (0.9/3 + 0.7/3) / 2 ───────────────────────
    joined = aggregator.join(_matches('Q', [('N1', 0.1), ('N2', 0.3)]))
    scores = scorer.score_patients(joined)
    assert scores.loc[0, 'heuristic_risk_score'] == pytest.approx(0.8 / 3)
    assert bool(scores.loc[0, 'icu_flag']) is False

    # ── 2. Undefined maxima contribute nothing ──────────────────────────────
    empty_labs = RiskScorer(NormalizationConstants(max_creatinine=None, max_wbc=0.0))
    assert empty_labs.score_neighbors([{'distance': 0.4, 'Creatinine': 5.0, 'WBC': 5.0}]) \
        == pytest.approx(0.2)

    # ── 3. Components stay within [0, 1] ────────────────────────────────────
    far = scorer.score_patients(aggregator.join(_matches('Q', [('N1', 2.0)])))
    assert far.loc[0, 'heuristic_risk_score'] == 0.0, "Opposite neighbors clamp to 0"


def test_patients_without_neighbors_score_zero():
    features = _features([('N1', 10.0, 13.0, 2.0, True)])
    aggregator = NeighborAggregator(features)
    scorer = RiskScorer.from_store(features)

    joined = aggregator.join(_matches('Q1', [('N1', 0.0)]))
    scores = scorer.score_patients(joined, patient_ids=['Q1', 'Q2'])
    assert scores['patient_id'].tolist() == ['Q1', 'Q2']
    assert scores.loc[1, 'heuristic_risk_score'] == 0.0
    assert scores.loc[1, 'neighbors_scored'] == 0
    assert bool(scores.loc[1, 'icu_flag']) is False
    assert scorer.score_neighbors([]) == 0.0


def test_neighbor_aggregation():
    features = _features([
        ('N1', 10.0, None, 1.0, None),
        ('N2', 14.0, None, None, None),
    ])
    aggregator = NeighborAggregator(features)
    matches = [
        NeighborMatch('Q', 'N1', 0.1),
        NeighborMatch('Q', 'N2', 0.2),
        NeighborMatch('Q', 'GHOST', 0.3),
    ]

    # ── 1. Means skip nulls; all-null fields aggregate to null ──────────────
    summary = aggregator.aggregate(matches)
    assert summary.query_id == 'Q'
    assert summary.neighbor_ids == ['N1', 'N2', 'GHOST']
    assert summary.WBC_avg == pytest.approx(12.0)
    assert summary.Creatinine_avg == pytest.approx(1.0)
    assert summary.Hemoglobin_avg is None

    # ── 2. Neighbors missing from the feature store are not counted ─────────
    assert summary.neighbor_count == 2
    assert summary.neighbors_considered == 3

    # ── 3. LEFT join keeps every neighbor row in rank order ─────────────────
    joined = aggregator.join(_matches('Q', [('N2', 0.2), ('GHOST', 0.3), ('N1', 0.4)]))
    assert joined['neighbor_id'].tolist() == ['N2', 'GHOST', 'N1']
    assert joined['has_features'].tolist() == [True, False, True]
    assert np.isnan(joined.loc[1, 'WBC'])

    # ── 4. Batch summaries keep query order and cover empty lists ───────────
    batch = aggregator.aggregate_batch({'B': [NeighborMatch('B', 'N2', 0.0)], 'A': []})
    assert batch['query_id'].tolist() == ['B', 'A']
    assert batch.loc[0, 'WBC_avg'] == pytest.approx(14.0)
    assert batch.loc[1, 'neighbor_count'] == 0
    assert pd.isna(batch.loc[1, 'WBC_avg'])
