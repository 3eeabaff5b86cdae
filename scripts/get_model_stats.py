import pandas as pd
from sklearn.metrics import (accuracy_score, precision_score, recall_score,
                             f1_score, roc_auc_score, average_precision_score,
                             confusion_matrix)

from src.config import EVAL_THRESHOLD, GROUND_TRUTH_FIELD, OUTPUT_DIR, RAW_DIR
from src.data.stores import FeatureStore
from src.models.train_classifier import feature_matrix, load_model

features = FeatureStore.from_csv(RAW_DIR / 'patient_features.csv')
model, impute_values = load_model(OUTPUT_DIR)

df = features.frame
df = df[df[GROUND_TRUTH_FIELD].notna()]
X = feature_matrix(df, impute_values)
y = df[GROUND_TRUTH_FIELD].astype(int).values

print(f"Evaluated: {len(y)} patients | ICU: {y.sum()} | Non-ICU: {(y==0).sum()}")
print(f"Imputation values: {impute_values}")

prob = model.predict_proba(X)[:, 1]
pred = (prob >= EVAL_THRESHOLD).astype(int)
tn, fp, fn, tp = confusion_matrix(y, pred, labels=[0, 1]).ravel()
line = (f"XGBoost: Acc={accuracy_score(y,pred):.4f} Prec={precision_score(y,pred,zero_division=0):.4f} "
        f"Sens={recall_score(y,pred,zero_division=0):.4f} F1={f1_score(y,pred,zero_division=0):.4f}")
if len(set(y)) == 2:
    line += f" AUROC={roc_auc_score(y,prob):.4f} AUPRC={average_precision_score(y,prob):.4f}"
print(f"{line} TP={tp} FP={fp} FN={fn} TN={tn}")

report_path = OUTPUT_DIR / 'evaluation_report.csv'
if report_path.exists():
    print(f"\nStored evaluation report:\n{pd.read_csv(report_path).to_string(index=False)}")
