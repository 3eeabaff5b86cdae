"""
ICU Alert Generation System.

Drives a sample of query patients through neighbor search, neighbor lab
aggregation and heuristic scoring, and produces a ranked alert set that
replaces the previous one wholesale.
"""

import numpy as np
import pandas as pd
from typing import Callable, Dict, List, Optional, Sequence
from datetime import datetime, timezone
import logging

from src.config import (
    ALERT_SAMPLE_SIZE, CREATININE_THRESHOLD, DECISION_THRESHOLD, DEFAULT_SUMMARY, MAX_ALERTS,
    RANDOM_SEED, RARE_PATTERN_POLICIES, RARE_PATTERN_POLICY, SEARCH_MAX_WORKERS,
    SEARCH_TIMEOUT_SECONDS, SELECTION_POLICIES, SELECTION_POLICY, TOP_K, WBC_THRESHOLD,
    PipelineConfig
)
from src.data.snapshots import write_snapshot
from src.data.stores import EmbeddingStore, FeatureStore
from src.scoring.aggregator import NeighborAggregator
from src.scoring.risk_scorer import RiskScorer
from src.search.nearest_neighbors import NearestNeighborSearch, matches_to_frame
from .advisory import SafeAdvisor

logger = logging.getLogger(__name__)

ALERT_COLUMNS = [
    'patient_id', 'icu_flag', 'icu_risk_score',
    'heuristic_risk_score', 'summary', 'generated_at'
]


class IcuAlert:
    """
    Represents an ICU-admission risk alert for a patient.
    """

    def __init__(
        self,
        patient_id: str,
        icu_flag: bool,
        icu_risk_score: float,
        heuristic_risk_score: float,
        summary: str,
        generated_at: datetime,
        neighbor_ids: Sequence[str] = ()
    ):
        """
        Initialize an ICU alert.

        Args:
            patient_id: Patient identifier
            icu_flag: Heuristic score reached the decision threshold
            icu_risk_score: Reported risk (0-1); the heuristic score unless an
                            advisory service supplied one
            heuristic_risk_score: Mean neighbor component (0-1)
            summary: Short clinical summary
            generated_at: Run timestamp shared by every alert of the run
            neighbor_ids: Neighbors that contributed to the score
        """
        self.patient_id = patient_id
        self.icu_flag = bool(icu_flag)
        self.icu_risk_score = float(icu_risk_score)
        self.heuristic_risk_score = float(heuristic_risk_score)
        self.summary = summary
        self.generated_at = generated_at
        self.neighbor_ids = list(neighbor_ids)

    def to_dict(self) -> Dict:
        """Convert alert to the persisted row format."""
        return {
            'patient_id': self.patient_id,
            'icu_flag': self.icu_flag,
            'icu_risk_score': self.icu_risk_score,
            'heuristic_risk_score': self.heuristic_risk_score,
            'summary': self.summary,
            'generated_at': self.generated_at.isoformat(),
        }

    def __str__(self) -> str:
        return (
            f"ICU ALERT [{'FLAGGED' if self.icu_flag else 'WATCH'}]\n"
            f"Patient: {self.patient_id}\n"
            f"Risk Score: {self.icu_risk_score:.2%}\n"
            f"Heuristic Score: {self.heuristic_risk_score:.2%}\n"
            f"Similar Cases: {len(self.neighbor_ids)}\n"
            f"Summary: {self.summary}"
        )


def select_query_patients(
    patient_ids: Sequence[str],
    sample_size: Optional[int],
    policy: str,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None
) -> List[str]:
    """
    Choose the query patients for one run.

    Args:
        patient_ids: Candidate patients
        sample_size: Number to select; ``None`` selects everyone
        policy: ``"fixed"`` takes the first ids in sorted order,
                ``"random"`` draws without replacement from an explicit
                generator (``rng`` or one seeded with ``seed``)

    Returns:
        Selected ids in sorted order
    """
    if policy not in SELECTION_POLICIES:
        raise ValueError(f"Unknown selection policy: {policy!r}")

    candidates = sorted(str(pid) for pid in patient_ids)
    if sample_size is None or sample_size >= len(candidates):
        return candidates

    if policy == 'fixed':
        return candidates[:sample_size]

    if rng is None:
        if seed is None:
            raise ValueError("Random selection needs a seed or an explicit generator")
        rng = np.random.default_rng(seed)
    chosen = rng.choice(len(candidates), size=sample_size, replace=False)
    return [candidates[i] for i in sorted(chosen)]


def rare_pattern_mask(
    frame: pd.DataFrame,
    creatinine_threshold: float = CREATININE_THRESHOLD,
    wbc_threshold: float = WBC_THRESHOLD
) -> pd.Series:
    """Rows whose Creatinine or WBC exceeds its threshold (nulls count as 0)."""
    return (
        (frame['Creatinine'].fillna(0.0) > creatinine_threshold)
        | (frame['WBC'].fillna(0.0) > wbc_threshold)
    )


class IcuAlertGenerator:
    """
    Generates ICU alerts from note-embedding neighbors and their lab values.
    """

    def __init__(
        self,
        search: NearestNeighborSearch,
        embedding_store: EmbeddingStore,
        feature_store: FeatureStore,
        top_k: int = TOP_K,
        decision_threshold: float = DECISION_THRESHOLD,
        creatinine_threshold: float = CREATININE_THRESHOLD,
        wbc_threshold: float = WBC_THRESHOLD,
        rare_pattern_policy: str = RARE_PATTERN_POLICY,
        max_alerts: int = MAX_ALERTS,
        sample_size: Optional[int] = ALERT_SAMPLE_SIZE,
        selection_policy: str = SELECTION_POLICY,
        seed: Optional[int] = RANDOM_SEED,
        max_workers: Optional[int] = SEARCH_MAX_WORKERS,
        timeout: Optional[float] = SEARCH_TIMEOUT_SECONDS,
        advisor: Optional[SafeAdvisor] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the alert generator.

        Args:
            search: Built nearest-neighbor search over ``embedding_store``
            embedding_store: Source of query vectors and notes
            feature_store: Lab values and ground truth
            top_k: Neighbors per query patient
            decision_threshold: Heuristic score needed for ``icu_flag``
            creatinine_threshold: Rare-pattern creatinine cutoff
            wbc_threshold: Rare-pattern WBC cutoff
            rare_pattern_policy: 'none', 'before_ranking' (drop neighbor rows
                                 outside the pattern before averaging) or
                                 'after_ranking' (keep patients whose own or
                                 neighbor labs match the pattern)
            max_alerts: Row cap of the persisted alert set
            sample_size: Number of query patients (None = all)
            selection_policy: 'fixed' or 'random'
            seed: Seed for 'random' selection
            max_workers: Thread pool size for batch search
            timeout: Per-query search timeout in seconds
            advisor: Optional advisory service wrapper for scores/summaries
            clock: Returns the run timestamp
        """
        if rare_pattern_policy not in RARE_PATTERN_POLICIES:
            raise ValueError(f"Unknown rare-pattern policy: {rare_pattern_policy!r}")

        self.search = search
        self.embedding_store = embedding_store
        self.feature_store = feature_store
        self.top_k = top_k
        self.creatinine_threshold = creatinine_threshold
        self.wbc_threshold = wbc_threshold
        self.rare_pattern_policy = rare_pattern_policy
        self.max_alerts = max_alerts
        self.sample_size = sample_size
        self.selection_policy = selection_policy
        self.seed = seed
        self.max_workers = max_workers
        self.timeout = timeout
        self.advisor = advisor
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.aggregator = NeighborAggregator(feature_store)
        self.scorer = RiskScorer.from_store(feature_store, decision_threshold)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        search: NearestNeighborSearch,
        embedding_store: EmbeddingStore,
        feature_store: FeatureStore,
        advisor: Optional[SafeAdvisor] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "IcuAlertGenerator":
        return cls(
            search, embedding_store, feature_store,
            top_k=config.top_k,
            decision_threshold=config.decision_threshold,
            creatinine_threshold=config.creatinine_threshold,
            wbc_threshold=config.wbc_threshold,
            rare_pattern_policy=config.rare_pattern_policy,
            max_alerts=config.max_alerts,
            sample_size=config.sample_size,
            selection_policy=config.selection_policy,
            seed=config.seed,
            max_workers=config.search_max_workers,
            timeout=config.search_timeout,
            advisor=advisor,
            clock=clock,
        )

    def select_queries(self, rng: Optional[np.random.Generator] = None) -> List[str]:
        return select_query_patients(
            self.embedding_store.patient_ids,
            self.sample_size,
            self.selection_policy,
            seed=self.seed,
            rng=rng,
        )

    def score_patients(self, patient_ids: Sequence[str]) -> pd.DataFrame:
        """
        Search, join and score the given query patients.

        Returns:
            One row per surviving patient with heuristic_risk_score, icu_flag
            and the neighbor ids used
        """
        queries = [(pid, self.embedding_store.vector(pid)) for pid in patient_ids]
        results = self.search.batch_query(
            queries, self.top_k, max_workers=self.max_workers, timeout=self.timeout
        )
        joined = self.aggregator.join(matches_to_frame(results))
        candidates = list(results.keys())

        if self.rare_pattern_policy == 'before_ranking':
            joined = joined[rare_pattern_mask(joined, self.creatinine_threshold, self.wbc_threshold)]
            surviving = set(joined['query_id'])
            candidates = [pid for pid in candidates if pid in surviving]

        scores = self.scorer.score_patients(joined, candidates)

        if self.rare_pattern_policy == 'after_ranking':
            scores = scores[self._matches_pattern(scores['patient_id'], joined)]

        neighbor_ids = joined.groupby('query_id', sort=False)['neighbor_id'].agg(list)
        scores = scores.assign(
            neighbor_ids=scores['patient_id'].map(neighbor_ids)
        )
        return scores.reset_index(drop=True)

    def _matches_pattern(self, patient_ids: pd.Series, joined: pd.DataFrame) -> pd.Series:
        own = self.feature_store.frame.set_index('patient_id')
        own_match = rare_pattern_mask(own, self.creatinine_threshold, self.wbc_threshold)
        neighbor_match = (
            joined.assign(match=rare_pattern_mask(joined, self.creatinine_threshold, self.wbc_threshold))
            .groupby('query_id')['match'].any()
        )
        return (
            patient_ids.map(own_match).fillna(False).astype(bool)
            | patient_ids.map(neighbor_match).fillna(False).astype(bool)
        )

    def generate_alerts(self, patient_ids: Optional[Sequence[str]] = None) -> List[IcuAlert]:
        """
        Generate the ranked alert set for one run.

        Args:
            patient_ids: Query patients; defaults to the configured selection

        Returns:
            Alerts sorted by icu_risk_score (highest first, ties by patient
            id), capped at ``max_alerts``
        """
        if patient_ids is None:
            patient_ids = self.select_queries()
        generated_at = self.clock()

        scores = self.score_patients(list(patient_ids))

        alerts = []
        for row in scores.itertuples(index=False):
            risk_score, summary = self._advise(row.patient_id, row.heuristic_risk_score)
            alerts.append(IcuAlert(
                patient_id=row.patient_id,
                icu_flag=row.icu_flag,
                icu_risk_score=risk_score,
                heuristic_risk_score=row.heuristic_risk_score,
                summary=summary,
                generated_at=generated_at,
                neighbor_ids=row.neighbor_ids if isinstance(row.neighbor_ids, list) else [],
            ))

        alerts.sort(key=lambda a: (-a.icu_risk_score, a.patient_id))
        alerts = alerts[:self.max_alerts]

        logger.info(
            "Generated %d alerts from %d query patients (%d flagged)",
            len(alerts), len(patient_ids), sum(a.icu_flag for a in alerts)
        )
        return alerts

    def _advise(self, patient_id: str, heuristic_score: float):
        if self.advisor is None:
            return heuristic_score, DEFAULT_SUMMARY
        note = self.embedding_store.note(patient_id)
        labs = self.feature_store.labs(patient_id)
        score = self.advisor.risk_score(note, labs)
        summary = self.advisor.summary(note, labs)
        return (
            heuristic_score if score is None else score,
            DEFAULT_SUMMARY if summary is None else summary,
        )

    @staticmethod
    def alerts_to_frame(alerts: List[IcuAlert]) -> pd.DataFrame:
        return pd.DataFrame([a.to_dict() for a in alerts], columns=ALERT_COLUMNS)

    def generate_alert_summary(self, alerts: List[IcuAlert]) -> Dict:
        """
        Generate summary statistics for a list of alerts.
        """
        if not alerts:
            return {
                'total_alerts': 0,
                'flagged_count': 0,
                'avg_risk_score': 0.0,
                'avg_heuristic_score': 0.0,
                'max_risk_score': 0.0
            }

        return {
            'total_alerts': len(alerts),
            'flagged_count': sum(1 for a in alerts if a.icu_flag),
            'avg_risk_score': float(np.mean([a.icu_risk_score for a in alerts])),
            'avg_heuristic_score': float(np.mean([a.heuristic_risk_score for a in alerts])),
            'max_risk_score': float(max(a.icu_risk_score for a in alerts))
        }

    def write_alerts(self, alerts: List[IcuAlert], output_path: str):
        """
        Replace the persisted alert set.

        Args:
            alerts: Complete alert set of this run
            output_path: Destination CSV
        """
        return write_snapshot(self.alerts_to_frame(alerts), output_path)
