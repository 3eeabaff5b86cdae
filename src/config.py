"""
Pipeline configuration.

Module-level defaults follow the constants blocks of the batch scripts;
PipelineConfig bundles them for one run and can be overridden from the CLI.
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
RAW_DIR = PROJECT_ROOT / "data" / "raw"
OUTPUT_DIR = PROJECT_ROOT / "data" / "output"

# ------------------------
# Similarity search
# ------------------------
TOP_K = 10
DISTANCE_METRIC = "cosine"
EXCLUDE_SELF = False
SEARCH_MAX_WORKERS = 4
SEARCH_TIMEOUT_SECONDS = None

# ------------------------
# Heuristic scoring / alerts
# ------------------------
DECISION_THRESHOLD = 0.5
CREATININE_THRESHOLD = 2.0
WBC_THRESHOLD = 12.0
ALERT_SAMPLE_SIZE = 200
SELECTION_POLICY = "random"        # "random" | "fixed"
RARE_PATTERN_POLICY = "none"       # "none" | "before_ranking" | "after_ranking"
MAX_ALERTS = 500
DEFAULT_SUMMARY = "Neighbor evidence supports elevated risk"

# ------------------------
# Classifier
# ------------------------
MAX_ITERATIONS = 50
EVAL_THRESHOLD = 0.5
RANDOM_SEED = 42

LAB_FIELDS = ["WBC", "Hemoglobin", "Creatinine"]
GROUND_TRUTH_FIELD = "icu_admit"

SELECTION_POLICIES = ("random", "fixed")
RARE_PATTERN_POLICIES = ("none", "before_ranking", "after_ranking")


@dataclass
class PipelineConfig:
    top_k: int = TOP_K
    distance_metric: str = DISTANCE_METRIC
    exclude_self: bool = EXCLUDE_SELF
    search_max_workers: Optional[int] = SEARCH_MAX_WORKERS
    search_timeout: Optional[float] = SEARCH_TIMEOUT_SECONDS
    decision_threshold: float = DECISION_THRESHOLD
    creatinine_threshold: float = CREATININE_THRESHOLD
    wbc_threshold: float = WBC_THRESHOLD
    sample_size: Optional[int] = ALERT_SAMPLE_SIZE
    selection_policy: str = SELECTION_POLICY
    rare_pattern_policy: str = RARE_PATTERN_POLICY
    max_alerts: int = MAX_ALERTS
    max_iterations: int = MAX_ITERATIONS
    eval_threshold: float = EVAL_THRESHOLD
    seed: int = RANDOM_SEED

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ValueError on settings the pipeline cannot honour."""
        if self.distance_metric != "cosine":
            raise ValueError(f"Unsupported distance metric: {self.distance_metric}")
        if self.top_k < 1:
            raise ValueError(f"top_k must be positive, got {self.top_k}")
        if self.selection_policy not in SELECTION_POLICIES:
            raise ValueError(
                f"selection_policy must be one of {SELECTION_POLICIES}, "
                f"got {self.selection_policy!r}"
            )
        if self.rare_pattern_policy not in RARE_PATTERN_POLICIES:
            raise ValueError(
                f"rare_pattern_policy must be one of {RARE_PATTERN_POLICIES}, "
                f"got {self.rare_pattern_policy!r}"
            )
        for name in ("decision_threshold", "eval_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1], got {value}")
        if self.sample_size is not None and self.sample_size < 0:
            raise ValueError(f"sample_size must be >= 0, got {self.sample_size}")
        if self.max_alerts < 0:
            raise ValueError(f"max_alerts must be >= 0, got {self.max_alerts}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.search_max_workers is not None and self.search_max_workers < 1:
            raise ValueError("search_max_workers must be positive when set")

    def to_dict(self) -> Dict:
        return asdict(self)
