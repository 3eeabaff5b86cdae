"""
Pytest configuration and shared fixtures for ICU risk pipeline tests
"""
import pytest
import pandas as pd
import numpy as np
from datetime import datetime, timezone

from src.data.stores import EmbeddingStore, FeatureStore


@pytest.fixture
def scenario_embeddings():
    """Three 2-d patients: P1 and P3 point almost the same way, P2 is orthogonal"""
    return EmbeddingStore(
        ['P1', 'P2', 'P3'],
        ['chest pain', 'ankle sprain', 'chest pain, short of breath'],
        [[1.0, 0.0], [0.0, 1.0], [0.9, 0.1]]
    )


@pytest.fixture
def cohort_frames():
    """
    24 patients in two note clusters. Odd-numbered rows form the sick
    cluster (high creatinine and WBC, ICU admitted), even rows the well one.
    A few lab values and two ground-truth flags are missing.
    """
    rng = np.random.default_rng(7)
    n = 24
    ids = [f'P{i:03d}' for i in range(1, n + 1)]
    group = np.arange(n) % 2

    centers = rng.normal(size=(2, 8))
    embeddings = centers[group] + rng.normal(scale=0.3, size=(n, 8))

    creatinine = np.where(group == 1, rng.uniform(2.2, 4.0, n), rng.uniform(0.6, 1.4, n))
    wbc = np.where(group == 1, rng.uniform(12.5, 20.0, n), rng.uniform(4.0, 10.0, n))
    hemoglobin = rng.uniform(8.0, 16.0, n)
    creatinine[3] = np.nan
    wbc[5] = np.nan

    icu_admit = [bool(g) for g in group]
    icu_admit[0] = None
    icu_admit[7] = None

    embeddings_df = pd.DataFrame({
        'patient_id': ids,
        'note': [f'Clinical note for {pid}' for pid in ids],
        'embedding': [row.tolist() for row in embeddings],
    })
    features_df = pd.DataFrame({
        'patient_id': ids,
        'WBC': wbc,
        'Hemoglobin': hemoglobin,
        'Creatinine': creatinine,
        'icu_admit': pd.Series(icu_admit, dtype=object),
    })
    return embeddings_df, features_df


@pytest.fixture
def cohort_stores(cohort_frames):
    embeddings_df, features_df = cohort_frames
    return EmbeddingStore.from_frame(embeddings_df), FeatureStore.from_frame(features_df)


@pytest.fixture
def cohort_csvs(cohort_frames, tmp_path):
    """Cohort written the way the BigQuery export lays it out"""
    embeddings_df, features_df = cohort_frames
    raw_dir = tmp_path / 'raw'
    raw_dir.mkdir()
    embeddings_path = raw_dir / 'patient_embeddings.csv'
    features_path = raw_dir / 'patient_features.csv'
    embeddings_df.to_csv(embeddings_path, index=False)
    features_df.to_csv(features_path, index=False)
    return embeddings_path, features_path


@pytest.fixture
def fixed_clock():
    stamp = datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)
    return lambda: stamp


class FailingAdvisoryService:
    """Advisory service whose every call raises"""

    def __init__(self):
        self.calls = 0

    def _fail(self, prompt):
        self.calls += 1
        raise ConnectionError('advisory endpoint unavailable')

    generate_bool = _fail
    generate_score = _fail
    generate_summary = _fail


class CannedAdvisoryService:
    """Advisory service with fixed answers"""

    def __init__(self, needs_icu=True, score=0.9, summary='Transfer to ICU'):
        self.needs_icu = needs_icu
        self.score = score
        self.summary = summary
        self.prompts = []

    def generate_bool(self, prompt):
        self.prompts.append(prompt)
        return self.needs_icu

    def generate_score(self, prompt):
        self.prompts.append(prompt)
        return self.score

    def generate_summary(self, prompt):
        self.prompts.append(prompt)
        return self.summary


@pytest.fixture
def failing_service():
    return FailingAdvisoryService()


@pytest.fixture
def canned_service():
    return CannedAdvisoryService()
