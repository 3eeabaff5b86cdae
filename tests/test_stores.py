"""
test_stores.py
Validates input coercion of the embedding and feature stores and the
all-or-nothing snapshot writes.
"""
import os
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from src.data import snapshots
from src.data.snapshots import _atomic_write, stage_outputs, write_snapshot
from src.data.stores import EmbeddingStore, FeatureStore, coerce_bool, coerce_numeric, parse_vector
from src.exceptions import DimensionMismatchError, DuplicatePatientError, SnapshotWriteError


def test_embedding_store():
    # ── 1. Exported array strings parse to float64 vectors ──────────────────
    vec = parse_vector('[0.5, 1, -2.25]')
    assert vec.dtype == np.float64, f"Expected float64, got {vec.dtype}"
    assert vec.tolist() == [0.5, 1.0, -2.25]

    # ── 2. Store exposes ids, notes and a read-only matrix ──────────────────
    store = EmbeddingStore([101, 102], ['note a', 'note b'], [[1, 0], '[0, 1]'])
    assert store.patient_ids == ['101', '102'], "Patient ids must be stored as strings"
    assert store.dimension == 2
    assert store.note(101) == 'note a'
    assert '102' in store and '103' not in store
    with pytest.raises(ValueError):
        store.matrix[0, 0] = 5.0

    # ── 3. Mixed dimensions are rejected ────────────────────────────────────
    with pytest.raises(DimensionMismatchError):
        EmbeddingStore(['A', 'B'], ['', ''], [[1, 0], [1, 0, 0]])

    # ── 4. Duplicate ids are rejected ───────────────────────────────────────
    with pytest.raises(DuplicatePatientError):
        EmbeddingStore(['A', 'A'], ['', ''], [[1, 0], [0, 1]])

    # ── 5. Empty store has no dimension ─────────────────────────────────────
    empty = EmbeddingStore([], [], [])
    assert len(empty) == 0 and empty.dimension is None


def test_embedding_store_csv_round_trip(cohort_stores, tmp_path):
    embeddings, _ = cohort_stores
    path = tmp_path / 'embeddings.csv'
    embeddings.to_frame().to_csv(path, index=False)

    reloaded = EmbeddingStore.from_csv(path)
    assert reloaded.patient_ids == embeddings.patient_ids
    assert np.allclose(reloaded.matrix, embeddings.matrix), "Vectors changed through CSV"


def test_feature_store_coercion():
    raw = pd.DataFrame({
        'patient_id': ['A', 'B', 'C', 'D'],
        'WBC': ['11.5', 'abc', None, 'inf'],
        'Hemoglobin': [13.0, 12.0, 'n/a', 9.5],
        'Creatinine': [1.1, 2.5, 0.9, None],
        'icu_admit': ['true', '0', None, 'maybe'],
    })
    store = FeatureStore.from_frame(raw)
    df = store.frame

    # ── 1. Unparseable and infinite lab values become null ──────────────────
    assert df['WBC'].dtype == np.float64
    assert df['WBC'].isna().tolist() == [False, True, True, True]
    assert pd.isna(df.loc[2, 'Hemoglobin'])

    # ── 2. Ground truth is a nullable boolean ───────────────────────────────
    assert str(df['icu_admit'].dtype) == 'boolean'
    assert df['icu_admit'].tolist()[:2] == [True, False]
    assert df['icu_admit'].isna().tolist() == [False, False, True, True]

    # ── 3. Accessors ────────────────────────────────────────────────────────
    assert store.labs('A') == {'WBC': 11.5, 'Hemoglobin': 13.0, 'Creatinine': 1.1}
    assert store.labs('B')['WBC'] is None
    assert store.labs('Z') is None, "Unknown patients have no lab record"
    assert store.global_max('Creatinine') == 2.5
    assert store.distinct_ground_truth() == 2

    # ── 4. Frame is a copy ──────────────────────────────────────────────────
    df.loc[0, 'WBC'] = 99.0
    assert store.labs('A')['WBC'] == 11.5


def test_feature_store_missing_columns():
    store = FeatureStore.from_frame(pd.DataFrame({'patient_id': ['A', 'B'], 'WBC': [5.0, 7.0]}))
    df = store.frame
    assert df['Creatinine'].isna().all(), "Missing lab columns load as all-null"
    assert df['icu_admit'].isna().all(), "Missing ground truth loads as all-null"
    assert store.global_max('Creatinine') is None
    assert store.global_mean('WBC') == 6.0
    assert store.distinct_ground_truth() == 0

    with pytest.raises(DuplicatePatientError):
        FeatureStore.from_frame(pd.DataFrame({'patient_id': ['A', 'A']}))


def test_coercion_helpers():
    assert coerce_numeric(pd.Series(['1', '-inf', 'x'])).isna().tolist() == [False, True, True]
    flags = coerce_bool(pd.Series([True, 'Yes', 'f', 1, 0.0, '']))
    assert flags.tolist()[:5] == [True, True, False, True, False]
    assert pd.isna(flags.iloc[5])


def test_snapshot_writes_are_all_or_nothing(tmp_path):
    path = tmp_path / 'out' / 'patient_alerts.csv'

    # ── 1. First write creates the directory and the file ───────────────────
    write_snapshot(pd.DataFrame({'patient_id': ['A'], 'score': [0.4]}), path)
    original = path.read_text()
    assert 'patient_id,score' in original

    # ── 2. A failing writer leaves the previous snapshot untouched ──────────
    def broken_writer(tmp_name):
        with open(tmp_name, 'w') as fh:
            fh.write('partial')
        raise IOError('disk full')

    with pytest.raises(SnapshotWriteError):
        _atomic_write(path, broken_writer)

    assert path.read_text() == original, "Previous snapshot must survive a failed write"
    leftovers = [name for name in os.listdir(path.parent) if name.endswith('.tmp')]
    assert leftovers == [], f"Temporary files left behind: {leftovers}"

    # ── 3. A successful write replaces the file wholesale ───────────────────
    write_snapshot(pd.DataFrame({'patient_id': ['B', 'C'], 'score': [0.1, 0.2]}), path)
    assert pd.read_csv(path)['patient_id'].tolist() == ['B', 'C']


def test_staged_outputs_commit_as_a_set(tmp_path, monkeypatch):
    out = tmp_path / 'out'
    with stage_outputs(out) as staging:
        write_snapshot(pd.DataFrame({'v': [1]}), staging / 'a.csv')
        write_snapshot(pd.DataFrame({'v': [1]}), staging / 'b.csv')
    previous = {name: (out / name).read_text() for name in ('a.csv', 'b.csv')}

    # ── 1. An error inside the block commits nothing ────────────────────────
    with pytest.raises(RuntimeError):
        with stage_outputs(out) as staging:
            write_snapshot(pd.DataFrame({'v': [2]}), staging / 'a.csv')
            raise RuntimeError('training diverged')
    assert {n: (out / n).read_text() for n in previous} == previous

    # ── 2. A failing move midway restores the files already replaced ────────
    real_replace = snapshots.os.replace

    def flaky_replace(src, dst):
        if Path(src).parent.name.startswith('.staging.') and Path(dst).name == 'b.csv':
            raise OSError('device busy')
        return real_replace(src, dst)

    monkeypatch.setattr(snapshots.os, 'replace', flaky_replace)
    with pytest.raises(SnapshotWriteError):
        with stage_outputs(out) as staging:
            write_snapshot(pd.DataFrame({'v': [3]}), staging / 'a.csv')
            write_snapshot(pd.DataFrame({'v': [3]}), staging / 'b.csv')
    monkeypatch.undo()

    assert {n: (out / n).read_text() for n in previous} == previous, \
        "Outputs must all stay at the previous run"
    assert sorted(p.name for p in out.iterdir()) == ['a.csv', 'b.csv']
