from src.config import RAW_DIR
from src.data.stores import EmbeddingStore, FeatureStore
from src.labels.build_labels import build_labels

embeddings = EmbeddingStore.from_csv(RAW_DIR / 'patient_embeddings.csv')
features = FeatureStore.from_csv(RAW_DIR / 'patient_features.csv')
df = features.frame

print(f'Embeddings: {len(embeddings)} patients, dimension {embeddings.dimension}')
print(f'Features shape: {df.shape}')
print(f'\nNull counts:\n{df.isna().sum()}')
print(f'\nGround truth distribution:\n{df["icu_admit"].value_counts(dropna=False)}')

labels = build_labels(features)
print(f'\nLabel distribution (without heuristic scores):\n{labels["label"].value_counts()}')
print(f'\nLabel sources:\n{labels["label_source"].value_counts()}')
missing = sorted(set(embeddings.patient_ids) - set(features.patient_ids))
print(f'\nPatients with embeddings but no features: {len(missing)}')
print(missing[:10])
