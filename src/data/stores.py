"""
Patient Embedding and Feature Stores.

Read-only, run-scoped holders for the two pipeline inputs: note embeddings
keyed by patient and the structured lab values (with optional ICU ground
truth). Loosely typed input is coerced on load; values that cannot be read
as numbers become nulls instead of errors.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from src.config import GROUND_TRUTH_FIELD, LAB_FIELDS
from src.exceptions import DimensionMismatchError, DuplicatePatientError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "t", "yes", "y", "1", "1.0"}
_FALSE_VALUES = {"false", "f", "no", "n", "0", "0.0"}


def parse_vector(value) -> np.ndarray:
    """
    Cast one stored embedding to a float64 vector.

    Accepts lists, tuples, numpy arrays and the JSON-style array strings
    that BigQuery ARRAY<FLOAT64> columns turn into when exported to CSV.
    """
    if isinstance(value, str):
        value = json.loads(value)
    return np.asarray(value, dtype=np.float64).ravel()


def check_dimensions(vectors: Sequence[np.ndarray], patient_ids: Sequence[str]) -> Optional[int]:
    """Return the shared dimension of ``vectors`` or raise DimensionMismatchError."""
    if len(vectors) == 0:
        return None
    lengths = pd.Series([len(v) for v in vectors], index=list(patient_ids))
    counts = lengths.value_counts()
    if len(counts) > 1:
        expected = int(counts.index[0])
        offenders = lengths[lengths != expected].index.tolist()[:5]
        raise DimensionMismatchError(
            f"Embeddings have differing dimensions {sorted(counts.index.tolist())}; "
            f"expected {expected}, offending patients: {offenders}"
        )
    return int(lengths.iloc[0])


def coerce_numeric(values: pd.Series) -> pd.Series:
    """SAFE_CAST to float64: unparseable and infinite values become NaN."""
    numeric = pd.to_numeric(values, errors="coerce").astype("float64")
    return numeric.replace([np.inf, -np.inf], np.nan)


def _to_bool(value):
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if value is None or pd.isna(value):
        return pd.NA
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return pd.NA


def coerce_bool(values: pd.Series) -> pd.Series:
    """Cast loosely typed flags to pandas' nullable boolean dtype."""
    return values.map(_to_bool).astype("boolean")


def _check_unique(patient_ids: pd.Series, store_name: str):
    duplicated = patient_ids[patient_ids.duplicated()].unique().tolist()
    if duplicated:
        raise DuplicatePatientError(
            f"{store_name} contains duplicate patient ids: {duplicated[:5]}"
        )


class EmbeddingStore:
    """
    Patient id -> (note text, fixed-length float64 embedding).
    """

    def __init__(
        self,
        patient_ids: Iterable,
        notes: Iterable[str],
        embeddings: Iterable
    ):
        """
        Build the store.

        Args:
            patient_ids: Unique patient identifiers (stored as strings)
            notes: Clinical note text per patient
            embeddings: One vector per patient, all of the same length

        Raises:
            DimensionMismatchError: if the vectors differ in length
            DuplicatePatientError: if a patient id repeats
        """
        ids = pd.Series(list(patient_ids), dtype="object").astype(str)
        _check_unique(ids, "EmbeddingStore")

        vectors = [parse_vector(v) for v in embeddings]
        notes = list(notes)
        if not len(ids) == len(vectors) == len(notes):
            raise ValueError(
                f"Column lengths differ: {len(ids)} ids, {len(notes)} notes, "
                f"{len(vectors)} embeddings"
            )

        self._dimension = check_dimensions(vectors, ids.tolist())
        self._patient_ids = ids.tolist()
        self._notes = dict(zip(self._patient_ids, notes))
        self._positions = {pid: i for i, pid in enumerate(self._patient_ids)}

        if vectors:
            matrix = np.vstack(vectors)
        else:
            matrix = np.empty((0, 0), dtype=np.float64)
        matrix.setflags(write=False)
        self._matrix = matrix

        logger.info(
            "Loaded %d patient embeddings (dimension=%s)", len(self), self._dimension
        )

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        id_col: str = "patient_id",
        note_col: str = "note",
        embedding_col: str = "embedding"
    ) -> "EmbeddingStore":
        notes = df[note_col].fillna("") if note_col in df.columns else [""] * len(df)
        return cls(df[id_col], notes, df[embedding_col])

    @classmethod
    def from_csv(cls, path: Union[str, Path], **kwargs) -> "EmbeddingStore":
        return cls.from_frame(pd.read_csv(path, dtype={"patient_id": str}), **kwargs)

    @property
    def patient_ids(self) -> List[str]:
        return list(self._patient_ids)

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def vector(self, patient_id) -> np.ndarray:
        return self._matrix[self._positions[str(patient_id)]]

    def note(self, patient_id) -> str:
        return self._notes[str(patient_id)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "patient_id": self._patient_ids,
            "note": [self._notes[pid] for pid in self._patient_ids],
            "embedding": [row.tolist() for row in self._matrix],
        })

    def __len__(self) -> int:
        return len(self._patient_ids)

    def __contains__(self, patient_id) -> bool:
        return str(patient_id) in self._positions


class FeatureStore:
    """
    Patient id -> lab values (WBC, Hemoglobin, Creatinine) and optional
    ``icu_admit`` ground truth.
    """

    def __init__(self, df: pd.DataFrame, id_col: str = "patient_id"):
        frame = pd.DataFrame({"patient_id": df[id_col].astype(str).values})
        _check_unique(frame["patient_id"], "FeatureStore")

        for col in LAB_FIELDS:
            if col in df.columns:
                frame[col] = coerce_numeric(df[col]).values
            else:
                logger.warning("Feature column %s missing; treating as all-null", col)
                frame[col] = np.nan

        if GROUND_TRUTH_FIELD in df.columns:
            frame[GROUND_TRUTH_FIELD] = coerce_bool(df[GROUND_TRUTH_FIELD]).values
        else:
            frame[GROUND_TRUTH_FIELD] = pd.array([pd.NA] * len(frame), dtype="boolean")

        self._frame = frame
        self._indexed = frame.set_index("patient_id")

        null_counts = frame[LAB_FIELDS].isna().sum().to_dict()
        logger.info("Loaded %d feature rows; null counts: %s", len(frame), null_counts)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, **kwargs) -> "FeatureStore":
        return cls(df, **kwargs)

    @classmethod
    def from_csv(cls, path: Union[str, Path], **kwargs) -> "FeatureStore":
        return cls(pd.read_csv(path, dtype={"patient_id": str}), **kwargs)

    @property
    def frame(self) -> pd.DataFrame:
        """Copy of the coerced feature table (one row per patient)."""
        return self._frame.copy()

    @property
    def patient_ids(self) -> List[str]:
        return self._frame["patient_id"].tolist()

    def labs(self, patient_id) -> Optional[Dict[str, Optional[float]]]:
        """Lab values for one patient, ``None`` when there is no record."""
        key = str(patient_id)
        if key not in self._indexed.index:
            return None
        row = self._indexed.loc[key, LAB_FIELDS]
        return {col: (None if pd.isna(row[col]) else float(row[col])) for col in LAB_FIELDS}

    def global_max(self, field: str) -> Optional[float]:
        value = self._frame[field].max()
        return None if pd.isna(value) else float(value)

    def global_mean(self, field: str) -> Optional[float]:
        value = self._frame[field].mean()
        return None if pd.isna(value) else float(value)

    def distinct_ground_truth(self) -> int:
        """Number of distinct non-null ground-truth values across all patients."""
        return int(self._frame[GROUND_TRUTH_FIELD].dropna().nunique())

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, patient_id) -> bool:
        return str(patient_id) in self._indexed.index
