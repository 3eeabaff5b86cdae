"""
test_analytics.py
Validates the neighbor context view, distance distribution and rare-pattern
cluster summaries.
"""
import pytest

from src.alerts.advisory import SafeAdvisor
from src.analytics.neighbor_patterns import (ADVISORY_COLUMNS, CONTEXT_COLUMNS,
                                             distance_distribution, neighbor_context,
                                             rare_pattern_clusters)
from src.search.nearest_neighbors import NearestNeighborSearch


def test_neighbor_context(cohort_stores, failing_service, canned_service):
    embeddings, features = cohort_stores
    search = NearestNeighborSearch().build(embeddings)

    # ── 1. One row per neighbor with notes, labs and neighborhood averages ──
    context = neighbor_context(search, embeddings, features, 'P002', k=6)
    assert context.columns.tolist() == CONTEXT_COLUMNS
    assert len(context) == 6
    assert context['patient_id'].iloc[0] == 'P002', "The query patient is its own closest match"
    assert context['distance'].is_monotonic_increasing
    assert context['combined_text'].iloc[0] == 'Clinical note for P002'
    assert context['neighbor_count'].nunique() == 1
    assert context['neighbor_Creatinine_avg'].iloc[0] == pytest.approx(context['Creatinine'].mean())

    # ── 2. Advisory columns stay null when the service fails ────────────────
    with_failures = neighbor_context(search, embeddings, features, 'P002', k=3,
                                     advisor=SafeAdvisor(failing_service))
    assert with_failures.columns.tolist() == CONTEXT_COLUMNS + ADVISORY_COLUMNS
    assert with_failures[ADVISORY_COLUMNS].isna().all().all()

    # ── 3. Valid advisory answers are attached per neighbor ─────────────────
    with_answers = neighbor_context(search, embeddings, features, 'P002', k=3,
                                    advisor=SafeAdvisor(canned_service))
    assert with_answers['needs_icu_bool'].tolist() == [True, True, True]
    assert with_answers['ai_icu_risk_score'].tolist() == [0.9, 0.9, 0.9]


def test_distance_distribution(cohort_stores):
    embeddings, _ = cohort_stores
    search = NearestNeighborSearch().build(embeddings)

    stats = distance_distribution(search, embeddings.vector('P001'), k=100)
    assert stats['neighbors_considered'] == len(embeddings)
    assert len(stats['quintile_distances']) == 6
    assert stats['quintile_distances'][0] == stats['min_distance']
    assert stats['quintile_distances'][-1] == stats['max_distance']
    assert stats['quintile_distances'] == sorted(stats['quintile_distances'])

    empty = distance_distribution(NearestNeighborSearch().build([]), [1.0], k=10)
    assert empty['neighbors_considered'] == 0 and empty['min_distance'] is None


def test_rare_pattern_clusters(cohort_stores):
    embeddings, features = cohort_stores
    search = NearestNeighborSearch().build(embeddings)
    labs = features.frame.set_index('patient_id')

    clusters = rare_pattern_clusters(search, embeddings, features, creatinine_threshold=2.0,
                                     anchor_limit=4, k=5)
    assert len(clusters) == 4
    assert all(labs.loc[pid, 'Creatinine'] > 2.0 for pid in clusters['anchor_id'])
    assert (clusters['neighbor_count'] == 5).all()
    assert clusters['anchor_id'].tolist() == sorted(clusters['anchor_id'])
    assert (clusters['closest'] >= 0.0).all()

    none = rare_pattern_clusters(search, embeddings, features, creatinine_threshold=100.0)
    assert none.empty
