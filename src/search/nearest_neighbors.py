"""
Nearest-Neighbor Search over Patient Note Embeddings.

Brute-force cosine search: every query is scored against the full embedding
matrix, which is feasible for the corpus sizes this batch pipeline targets.
Results are ordered by ascending distance with ties broken by patient id,
so repeated runs over the same store return identical lists.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.metrics.pairwise import cosine_similarity

from src.data.stores import EmbeddingStore, check_dimensions, parse_vector
from src.exceptions import DimensionMismatchError, SearchTimeoutError

logger = logging.getLogger(__name__)

# Distance reported when either vector has zero magnitude
ZERO_VECTOR_DISTANCE = 1.0


@dataclass(frozen=True)
class NeighborMatch:
    query_id: Optional[str]
    neighbor_id: str
    distance: float

    def to_dict(self) -> Dict:
        return asdict(self)


def cosine_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine distance (1 - cosine similarity) from one vector to every row.

    Zero-magnitude vectors normalise to zero in scikit-learn, which gives a
    similarity of 0 and therefore the sentinel distance of 1.0 rather than NaN.
    Results are clipped to [0, 2] to absorb floating-point overshoot.
    """
    if matrix.shape[0] == 0:
        return np.empty(0, dtype=np.float64)
    similarities = cosine_similarity(query.reshape(1, -1), matrix)[0]
    distances = 1.0 - similarities

    query_zero = not np.any(query)
    row_zero = ~np.any(matrix, axis=1)
    if query_zero:
        distances[:] = ZERO_VECTOR_DISTANCE
    else:
        distances[row_zero] = ZERO_VECTOR_DISTANCE

    return np.clip(distances, 0.0, 2.0)


class NearestNeighborSearch:
    """
    Exact k-nearest-neighbor search by cosine distance.
    """

    def __init__(self, exclude_self: bool = False):
        """
        Initialize the search.

        Args:
            exclude_self: Drop the query patient from its own neighbor list
                          when the query id is present in the store
        """
        self.exclude_self = exclude_self
        self._patient_ids = np.array([], dtype=object)
        self._id_rank = np.array([], dtype=np.int64)
        self._positions: Dict[str, int] = {}
        self._matrix = np.empty((0, 0), dtype=np.float64)
        self._dimension: Optional[int] = None

    def build(
        self,
        embeddings: Union[EmbeddingStore, pd.DataFrame, Iterable[Tuple[str, Iterable[float]]]]
    ) -> "NearestNeighborSearch":
        """
        Build the searchable structure.

        Args:
            embeddings: An EmbeddingStore, a frame with ``patient_id`` and
                        ``embedding`` columns, or (patient_id, vector) pairs

        Returns:
            self, for chaining

        Raises:
            DimensionMismatchError: if the vectors differ in length
        """
        if isinstance(embeddings, EmbeddingStore):
            patient_ids = embeddings.patient_ids
            matrix = embeddings.matrix
            dimension = embeddings.dimension
        else:
            if isinstance(embeddings, pd.DataFrame):
                pairs = zip(embeddings["patient_id"], embeddings["embedding"])
            else:
                pairs = embeddings
            patient_ids, vectors = [], []
            for patient_id, vector in pairs:
                patient_ids.append(str(patient_id))
                vectors.append(parse_vector(vector))
            dimension = check_dimensions(vectors, patient_ids)
            matrix = np.vstack(vectors) if vectors else np.empty((0, 0), dtype=np.float64)

        self._patient_ids = np.array(patient_ids, dtype=object)
        # Rank of each id in sorted order, used as the tie-break key
        order = np.argsort(self._patient_ids.astype(str), kind="mergesort")
        self._id_rank = np.empty(len(order), dtype=np.int64)
        self._id_rank[order] = np.arange(len(order))
        self._positions = {pid: i for i, pid in enumerate(patient_ids)}
        self._matrix = np.asarray(matrix, dtype=np.float64)
        self._dimension = dimension

        logger.info("Built cosine search over %d vectors (dimension=%s)", len(self), dimension)
        return self

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return len(self._patient_ids)

    def query(
        self,
        vector: Iterable[float],
        k: int,
        query_id: Optional[str] = None
    ) -> List[NeighborMatch]:
        """
        Return the ``k`` nearest stored patients to ``vector``.

        Args:
            vector: Query embedding
            k: Maximum number of neighbors
            query_id: Identifier copied into each match (and used by
                      ``exclude_self``)

        Returns:
            Matches in ascending distance, ties by neighbor id; empty when the
            structure is empty
        """
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        if len(self) == 0:
            return []

        query = parse_vector(vector)
        if query.shape[0] != self._dimension:
            raise DimensionMismatchError(
                f"Query vector has dimension {query.shape[0]}, store has {self._dimension}"
            )

        distances = cosine_distances(query, self._matrix)
        candidates = np.arange(len(self))

        if self.exclude_self and query_id is not None and str(query_id) in self._positions:
            candidates = candidates[candidates != self._positions[str(query_id)]]

        # lexsort: last key is the primary key
        order = np.lexsort((self._id_rank[candidates], distances[candidates]))
        top = candidates[order[:k]]

        qid = None if query_id is None else str(query_id)
        return [
            NeighborMatch(qid, str(self._patient_ids[i]), float(distances[i]))
            for i in top
        ]

    def batch_query(
        self,
        queries: Iterable[Tuple[str, Iterable[float]]],
        k: int,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, List[NeighborMatch]]:
        """
        Run independent queries against the same structure.

        Args:
            queries: (query_id, vector) pairs; ids must be unique
            k: Neighbors per query
            max_workers: Thread pool size; ``None`` or 1 runs sequentially
                         unless a timeout is set
            timeout: Per-query time budget in seconds; enforced on a thread
                     pool (of one worker when ``max_workers`` is unset)

        Returns:
            query_id -> ranked neighbor list, in input order

        Raises:
            SearchTimeoutError: if any query exceeds ``timeout``; the whole
                                batch is aborted and nothing is returned
        """
        queries = [(str(qid), vec) for qid, vec in queries]
        ids = [qid for qid, _ in queries]
        if len(set(ids)) != len(ids):
            raise ValueError("batch_query received duplicate query ids")

        pooled = max_workers is not None and max_workers > 1
        if timeout is None and not pooled:
            results = self._run_sequential(queries, k)
        else:
            results = self._run_pooled(queries, k, max_workers if pooled else 1, timeout)

        logger.info("Completed %d neighbor queries (k=%d)", len(results), k)
        return {qid: results[qid] for qid in ids}

    def _run_sequential(self, queries, k) -> Dict[str, List[NeighborMatch]]:
        return {qid: self.query(vector, k, query_id=qid) for qid, vector in queries}

    def _run_pooled(self, queries, k, max_workers, timeout) -> Dict[str, List[NeighborMatch]]:
        pool = ThreadPoolExecutor(max_workers=max_workers)
        futures = {
            qid: pool.submit(self.query, vector, k, qid)
            for qid, vector in queries
        }
        results = {}
        try:
            for qid, future in futures.items():
                results[qid] = future.result(timeout=timeout)
        except FutureTimeout:
            pool.shutdown(wait=False, cancel_futures=True)
            raise SearchTimeoutError(
                f"Query {qid} exceeded {timeout}s; batch of {len(queries)} aborted"
            )
        except BaseException:
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return results


def matches_to_frame(results: Dict[str, List[NeighborMatch]]) -> pd.DataFrame:
    """Flatten batch results into query_id / neighbor_id / distance / rank rows."""
    rows = [
        {"query_id": query_id, "neighbor_id": match.neighbor_id,
         "distance": match.distance, "rank": rank}
        for query_id, matches in results.items()
        for rank, match in enumerate(matches, 1)
    ]
    if not rows:
        return pd.DataFrame(columns=["query_id", "neighbor_id", "distance", "rank"])
    return pd.DataFrame(rows)
