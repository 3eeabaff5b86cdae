"""
Run the ICU Risk Pipeline.

Sequential batch stages: load stores -> neighbor search -> aggregate/score
-> persist alerts -> build labels -> train classifier -> evaluate -> predict
-> evaluate predictions. Each output is written as a complete replacement;
a failing stage leaves the outputs of earlier stages in place.
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

import pandas as pd

from src.alerts.advisory import AdvisoryService, SafeAdvisor
from src.alerts.alert_generator import IcuAlertGenerator
from src.config import (GROUND_TRUTH_FIELD, OUTPUT_DIR, RAW_DIR, PipelineConfig,
                        RARE_PATTERN_POLICIES, SELECTION_POLICIES)
from src.data.snapshots import stage_outputs, write_snapshot
from src.data.stores import EmbeddingStore, FeatureStore
from src.labels.build_labels import build_labels
from src.models.evaluate import evaluate_model, evaluate_predictions
from src.models.train_classifier import (feature_matrix, predict_probabilities, save_model,
                                         train_classifier)
from src.search.nearest_neighbors import NearestNeighborSearch

ALERTS_FILE = "patient_alerts.csv"
PREDICTIONS_FILE = "patient_xgb_preds.csv"
REPORT_FILE = "evaluation_report.csv"
METRICS_FILE = "model_metrics.csv"
LABELS_FILE = "training_labels.csv"


def run_alert_stage(
    config: PipelineConfig,
    embedding_store: EmbeddingStore,
    feature_store: FeatureStore,
    output_dir: Path,
    advisor: Optional[SafeAdvisor] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> pd.DataFrame:
    """Search, score and persist the alert set; returns it as a frame."""
    search = NearestNeighborSearch(exclude_self=config.exclude_self).build(embedding_store)
    generator = IcuAlertGenerator.from_config(
        config, search, embedding_store, feature_store, advisor=advisor, clock=clock
    )
    alerts = generator.generate_alerts()
    generator.write_alerts(alerts, output_dir / ALERTS_FILE)

    summary = generator.generate_alert_summary(alerts)
    print(f"  Alerts written: {summary['total_alerts']}")
    print(f"  Flagged for ICU: {summary['flagged_count']}")
    print(f"  Average risk score: {summary['avg_risk_score']:.2%}")
    for i, alert in enumerate(alerts[:3], 1):
        print(f"\n{i}. {alert}")

    return generator.alerts_to_frame(alerts)


def run_classifier_stage(
    config: PipelineConfig,
    feature_store: FeatureStore,
    alerts: pd.DataFrame,
    output_dir: Path
) -> Dict:
    """Label, train, predict and evaluate; persists every classifier output."""
    labels = build_labels(
        feature_store,
        heuristic_scores=alerts,
        decision_threshold=config.decision_threshold,
        creatinine_threshold=config.creatinine_threshold,
        wbc_threshold=config.wbc_threshold,
    )
    print(f"  Label sources: {labels['label_source'].value_counts().to_dict()}")
    print(f"  Positive labels: {int(labels['label'].sum())}/{len(labels)}")

    model, impute_values = train_classifier(
        feature_store, labels, max_iterations=config.max_iterations, seed=config.seed
    )

    frame = feature_store.frame
    evaluated = frame[frame[GROUND_TRUTH_FIELD].notna()]
    metrics = evaluate_model(
        model,
        feature_matrix(evaluated, impute_values),
        evaluated[GROUND_TRUTH_FIELD].astype(bool).values,
        threshold=config.eval_threshold,
    )
    predictions = predict_probabilities(model, feature_store, impute_values)
    report = evaluate_predictions(predictions, feature_store, threshold=config.eval_threshold)

    # The five outputs replace the previous run's as one set or not at all
    with stage_outputs(output_dir) as staging:
        write_snapshot(labels, staging / LABELS_FILE)
        save_model(model, impute_values, staging)
        write_snapshot(pd.DataFrame([metrics]), staging / METRICS_FILE)
        write_snapshot(predictions, staging / PREDICTIONS_FILE)
        write_snapshot(report.to_frame(), staging / REPORT_FILE)

    for name, value in metrics.items():
        print(f"  {name:<10}: {value:.4f}")
    print(f"  Evaluated {report.total_eval} patients | TP={report.true_positives} "
          f"FN={report.false_negatives} FP={report.false_positives} TN={report.true_negatives}")

    return {'labels': labels, 'predictions': predictions, 'metrics': metrics, 'report': report}


def run_pipeline(
    config: PipelineConfig,
    embeddings_path: Path,
    features_path: Path,
    output_dir: Path,
    advisory_service: Optional[AdvisoryService] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> Dict:
    """
    Run every stage end to end.

    Args:
        config: Run configuration
        embeddings_path: CSV with patient_id, note, embedding
        features_path: CSV with patient_id, WBC, Hemoglobin, Creatinine, icu_admit
        output_dir: Destination of all outputs
        advisory_service: Optional generative collaborator
        clock: Run timestamp source

    Returns:
        Dictionary with the alerts frame and classifier outputs
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    advisor = SafeAdvisor(advisory_service) if advisory_service is not None else None

    print("\n[1] LOADING STORES")
    print("-" * 70)
    embedding_store = EmbeddingStore.from_csv(embeddings_path)
    feature_store = FeatureStore.from_csv(features_path)
    print(f"  Embeddings: {len(embedding_store)} patients (dimension={embedding_store.dimension})")
    print(f"  Features:   {len(feature_store)} patients")

    print("\n[2] NEIGHBOR SEARCH & ALERTS")
    print("-" * 70)
    alerts = run_alert_stage(config, embedding_store, feature_store, output_dir, advisor, clock)

    print("\n[3] CLASSIFIER TRAINING & EVALUATION")
    print("-" * 70)
    results = run_classifier_stage(config, feature_store, alerts, output_dir)
    results['alerts'] = alerts
    return results


def main():
    parser = argparse.ArgumentParser(description='Score ICU-admission risk from note neighbors and labs')
    parser.add_argument('--embeddings', type=str, default=str(RAW_DIR / 'patient_embeddings.csv'),
                        help='Path to embeddings CSV')
    parser.add_argument('--features', type=str, default=str(RAW_DIR / 'patient_features.csv'),
                        help='Path to lab features CSV')
    parser.add_argument('--output-dir', type=str, default=str(OUTPUT_DIR),
                        help='Output directory for alerts, predictions and model')
    parser.add_argument('--top-k', type=int, default=PipelineConfig.top_k,
                        help='Neighbors per query patient')
    parser.add_argument('--decision-threshold', type=float, default=PipelineConfig.decision_threshold,
                        help='Heuristic score needed for the ICU flag')
    parser.add_argument('--creatinine-threshold', type=float,
                        default=PipelineConfig.creatinine_threshold,
                        help='Rare-pattern creatinine cutoff')
    parser.add_argument('--wbc-threshold', type=float, default=PipelineConfig.wbc_threshold,
                        help='Rare-pattern WBC cutoff')
    parser.add_argument('--sample-size', type=int, default=PipelineConfig.sample_size,
                        help='Number of query patients')
    parser.add_argument('--all-patients', action='store_true',
                        help='Query every patient instead of a sample')
    parser.add_argument('--selection-policy', choices=SELECTION_POLICIES,
                        default=PipelineConfig.selection_policy,
                        help='How query patients are chosen')
    parser.add_argument('--rare-pattern-policy', choices=RARE_PATTERN_POLICIES,
                        default=PipelineConfig.rare_pattern_policy,
                        help='Where the rare-pattern filter applies')
    parser.add_argument('--max-alerts', type=int, default=PipelineConfig.max_alerts,
                        help='Row cap of the alert set')
    parser.add_argument('--exclude-self', action='store_true',
                        help='Drop the query patient from its own neighbors')
    parser.add_argument('--max-workers', type=int, default=PipelineConfig.search_max_workers,
                        help='Thread pool size for neighbor search')
    parser.add_argument('--search-timeout', type=float, default=None,
                        help='Per-query search timeout in seconds')
    parser.add_argument('--max-iterations', type=int, default=PipelineConfig.max_iterations,
                        help='Boosting rounds')
    parser.add_argument('--seed', type=int, default=PipelineConfig.seed,
                        help='Random seed for sampling and training')
    parser.add_argument('--log-level', type=str, default='WARNING',
                        help='Logging level for library modules')

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format='%(asctime)s %(name)s %(levelname)s %(message)s'
    )

    config = PipelineConfig(
        top_k=args.top_k,
        exclude_self=args.exclude_self,
        search_max_workers=args.max_workers,
        search_timeout=args.search_timeout,
        decision_threshold=args.decision_threshold,
        creatinine_threshold=args.creatinine_threshold,
        wbc_threshold=args.wbc_threshold,
        sample_size=None if args.all_patients else args.sample_size,
        selection_policy=args.selection_policy,
        rare_pattern_policy=args.rare_pattern_policy,
        max_alerts=args.max_alerts,
        max_iterations=args.max_iterations,
        seed=args.seed,
    )

    print("=" * 70)
    print("ICU Admission Risk Pipeline")
    print("=" * 70)

    run_pipeline(config, Path(args.embeddings), Path(args.features), Path(args.output_dir))

    print("\n" + "=" * 70)
    print("Pipeline complete!")
    print("=" * 70)


if __name__ == '__main__':
    main()
