"""
Export the embedding and feature tables from BigQuery to CSV.

The embeddings are cast to ARRAY<FLOAT64> on export so the pipeline reads a
single numeric representation.

Usage:
    python -m src.data.export_tables --project-id my-project --dataset-id synthea_demo
"""

import argparse
from pathlib import Path

from google.cloud import bigquery

from src.config import RAW_DIR

EMBEDDINGS_TABLE = "patient_embeddings"
FEATURES_TABLE = "patient_features"

EMBEDDINGS_FILE = "patient_embeddings.csv"
FEATURES_FILE = "patient_features.csv"


def embeddings_sql(project_id: str, dataset_id: str, table: str = EMBEDDINGS_TABLE) -> str:
    return f"""
SELECT
    patient_id,
    note,
    CAST(embedding AS ARRAY<FLOAT64>) AS embedding
FROM `{project_id}.{dataset_id}.{table}`
ORDER BY patient_id
"""


def features_sql(project_id: str, dataset_id: str, table: str = FEATURES_TABLE) -> str:
    return f"""
SELECT
    patient_id,
    WBC,
    Hemoglobin,
    Creatinine,
    icu_admit
FROM `{project_id}.{dataset_id}.{table}`
ORDER BY patient_id
"""


def export_tables(client, project_id: str, dataset_id: str, raw_dir: Path = RAW_DIR):
    """
    Run both export queries and write the results as CSV.

    Args:
        client: A ``google.cloud.bigquery.Client`` (or anything exposing
                ``query(sql).to_dataframe()``)
        project_id: GCP project holding the dataset
        dataset_id: Dataset with the embeddings and feature tables
        raw_dir: Output directory

    Returns:
        (embeddings path, features path)
    """
    raw_dir = Path(raw_dir)
    raw_dir.mkdir(parents=True, exist_ok=True)

    embeddings = client.query(embeddings_sql(project_id, dataset_id)).to_dataframe()
    # Lists serialise as "[0.1, 0.2]", which the embedding store parses back
    embeddings["embedding"] = embeddings["embedding"].map(lambda v: [float(x) for x in v])
    embeddings_path = raw_dir / EMBEDDINGS_FILE
    embeddings.to_csv(embeddings_path, index=False)
    print(f"Embeddings exported to {embeddings_path} ({len(embeddings)} rows)")

    features = client.query(features_sql(project_id, dataset_id)).to_dataframe()
    features_path = raw_dir / FEATURES_FILE
    features.to_csv(features_path, index=False)
    print(f"Features exported to {features_path} ({len(features)} rows)")

    return embeddings_path, features_path


def main():
    parser = argparse.ArgumentParser(description='Export ICU pipeline inputs from BigQuery')
    parser.add_argument('--project-id', type=str, required=True,
                        help='GCP project id')
    parser.add_argument('--dataset-id', type=str, default='synthea_demo',
                        help='BigQuery dataset id')
    parser.add_argument('--raw-dir', type=str, default=str(RAW_DIR),
                        help='Output directory for the CSV exports')
    args = parser.parse_args()

    client = bigquery.Client(project=args.project_id)
    export_tables(client, args.project_id, args.dataset_id, Path(args.raw_dir))


if __name__ == '__main__':
    main()
