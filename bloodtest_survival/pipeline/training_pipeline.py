"""
Main Training Pipeline

Imputation -> aggregation -> correlation feature selection -> repeated
cross-validation of a random forest -> held-out evaluation.

All randomness comes from one numpy RandomState created at the start of a
run and passed explicitly to the split, the fold generator and every forest,
so one seed reproduces the whole run.
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
import pandas as pd
import yaml
from sklearn.ensemble import RandomForestClassifier
from sklearn.model_selection import RepeatedStratifiedKFold, train_test_split

from ..config import PipelineConfig, load_config
from ..exceptions import DataIntegrityError, InsufficientDataError, SchemaMismatchError
from ..utils.experiment_tracking import setup_experiment_tracking, tracked_run
from ..utils.model_utils import (
    CLASS_ORDER, EvaluationResult, ModelEvaluator, impurity_importance, summarize_cv_scores,
)
from .aggregation import PatientAggregator
from .feature_engineering import CorrelationFeatureSelector
from .preprocessing import DataValidator, MissingValueHandler, impute_records
from .records import AGE, OUTCOME, RecordSchema, RecordStore, load_data

logger = logging.getLogger(__name__)

_MAX_SEED = np.iinfo(np.int32).max


def draw_seed(random_state: np.random.RandomState) -> int:
    """Draw the next integer seed from the run-wide generator."""
    return int(random_state.randint(_MAX_SEED))


def _to_builtin(obj):
    """Convert numpy scalars/arrays to plain Python types for YAML."""
    if isinstance(obj, dict):
        return {k: _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if hasattr(obj, 'item'):  # numpy scalar
        return obj.item()
    return obj


# =====================
# Stratified Patient Splitter
# =====================
@dataclass
class TrainTestSplit:
    """Disjoint train/test partition of patient ids."""
    train_ids: List[Any]
    test_ids: List[Any]

    def to_dict(self) -> Dict[str, List[Any]]:
        return {'train_ids': _to_builtin(self.train_ids), 'test_ids': _to_builtin(self.test_ids)}


@dataclass
class StratifiedPatientSplitter:
    """Partition patients so both sides keep the outcome ratio (within rounding)."""
    train_fraction: float = 0.7

    def split(self, y: pd.Series, random_state: np.random.RandomState) -> TrainTestSplit:
        counts = y.value_counts()
        if len(counts) < 2:
            raise InsufficientDataError(
                f"Stratification needs both outcome classes, found {sorted(map(str, counts.index))}",
                column=OUTCOME,
            )
        if counts.min() < 2:
            raise InsufficientDataError(
                f"Class '{counts.idxmin()}' has {counts.min()} patient(s); at least 2 are needed to stratify",
                column=OUTCOME,
            )

        try:
            train_ids, test_ids = train_test_split(
                y.index.to_numpy(),
                train_size=self.train_fraction,
                stratify=y.to_numpy(),
                random_state=random_state,
            )
        except ValueError as e:
            raise InsufficientDataError(f"Cannot form a stratified split: {e}", column=OUTCOME) from e

        split = TrainTestSplit(train_ids=sorted(train_ids.tolist()), test_ids=sorted(test_ids.tolist()))
        logger.info(f"Split {len(y)} patients into {len(split.train_ids)} train / {len(split.test_ids)} test")
        return split


# =====================
# ClassifierHarness
# =====================
class ClassifierHarness:
    """Random forest with fixed hyperparameters: split, cross-validate, evaluate."""

    def __init__(self,
                 train_fraction: float = 0.7,
                 cv_folds: int = 10,
                 cv_repeats: int = 5,
                 ensemble_size: int = 10,
                 n_jobs: int = 1):
        self.train_fraction = train_fraction
        self.cv_folds = cv_folds
        self.cv_repeats = cv_repeats
        self.ensemble_size = ensemble_size
        self.n_jobs = n_jobs
        self.model: Optional[RandomForestClassifier] = None
        self.feature_names_: List[str] = []
        self.cv_metrics_: Dict[str, float] = {}

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ClassifierHarness":
        return cls(
            train_fraction=config.train_fraction,
            cv_folds=config.cv_folds,
            cv_repeats=config.cv_repeats,
            ensemble_size=config.ensemble_size,
            n_jobs=config.n_jobs,
        )

    # ---------- Data ----------
    def build_model_table(self,
                          patients: pd.DataFrame,
                          profiles: pd.DataFrame,
                          selected_features: Sequence[str]) -> Tuple[pd.DataFrame, pd.Series]:
        """Join patient records with the selected biomarker means plus age."""
        features = [f for f in selected_features if f != AGE]
        joined = patients[[AGE, OUTCOME]].join(profiles[features], how='inner')

        unlabeled = joined.index[joined[OUTCOME].isna().to_numpy()]
        if len(unlabeled):
            raise DataIntegrityError(f"{len(unlabeled)} patient(s) have no outcome",
                                     patient_id=unlabeled[0], column=OUTCOME)

        X = joined[features + [AGE]]
        y = joined[OUTCOME].astype(str)
        logger.info(f"Model table: {X.shape[0]} patients x {X.shape[1]} features")
        return X, y

    # ---------- Training ----------
    def _new_forest(self, random_state: np.random.RandomState) -> RandomForestClassifier:
        return RandomForestClassifier(
            n_estimators=self.ensemble_size,
            random_state=draw_seed(random_state),
            n_jobs=self.n_jobs,
        )

    def train(self, X: pd.DataFrame, y: pd.Series, random_state: np.random.RandomState) -> Dict[str, float]:
        """Repeated stratified k-fold CV on the training partition, then a final fit on all of it."""
        start_time = time.time()
        counts = y.value_counts()
        for label in CLASS_ORDER:
            n = int(counts.get(label, 0))
            if n < self.cv_folds:
                raise InsufficientDataError(
                    f"Class '{label}' has {n} training patients, fewer than cv_folds={self.cv_folds}",
                    column=OUTCOME,
                )

        cv = RepeatedStratifiedKFold(
            n_splits=self.cv_folds, n_repeats=self.cv_repeats, random_state=draw_seed(random_state)
        )
        evaluator = ModelEvaluator()
        total = self.cv_folds * self.cv_repeats
        fold_metrics: List[Dict[str, float]] = []

        for fold, (train_idx, val_idx) in enumerate(cv.split(X, y), 1):
            logger.info(f"Training fold {fold}/{total}")
            forest = self._new_forest(random_state)
            forest.fit(X.iloc[train_idx], y.iloc[train_idx])
            y_pred = forest.predict(X.iloc[val_idx])
            fold_metrics.append(evaluator.calculate_metrics(y.iloc[val_idx].to_numpy(), y_pred))

        self.cv_metrics_ = summarize_cv_scores(fold_metrics)
        logger.info(f"Cross-validation over {total} folds: accuracy {self.cv_metrics_['cv_accuracy']:.3f} "
                    f"(+/- {self.cv_metrics_['cv_accuracy_std']:.3f}), kappa {self.cv_metrics_['cv_kappa']:.3f}")

        self.model = self._new_forest(random_state)
        self.model.fit(X, y)
        self.feature_names_ = list(X.columns)

        elapsed_time = time.time() - start_time
        logger.info(f"Trained {self.ensemble_size}-tree forest on {len(X)} patients in {elapsed_time:.2f} seconds")
        return self.cv_metrics_

    # ---------- Evaluation ----------
    def check_columns(self, X: pd.DataFrame) -> pd.DataFrame:
        """Require exactly the training columns (any order) and return them in training order."""
        expected, received = set(self.feature_names_), set(X.columns)
        if expected != received:
            missing = sorted(expected - received)
            unexpected = sorted(map(str, received - expected))
            raise SchemaMismatchError(
                f"Columns differ from training (missing={missing}, unexpected={unexpected})",
                column=(missing or unexpected)[0],
            )
        return X[self.feature_names_]

    def evaluate(self, X: pd.DataFrame, y: pd.Series) -> EvaluationResult:
        logger.info("Evaluating model on held-out patients...")
        if self.model is None:
            raise ValueError("Model not trained yet")

        X = self.check_columns(X)
        y_pred = self.model.predict(X)
        return ModelEvaluator().evaluate(
            y.to_numpy(), y_pred, self.feature_names_, impurity_importance(self.model)
        )

    def run(self,
            patients: pd.DataFrame,
            profiles: pd.DataFrame,
            selected_features: Sequence[str],
            random_state: np.random.RandomState) -> Tuple[TrainTestSplit, EvaluationResult]:
        """Median-fill, split, train and evaluate."""
        X, y = self.build_model_table(patients, profiles, selected_features)
        # population level: one row per patient, no temporal context left
        X = MissingValueHandler(strategy='median').fit_transform(X)

        split = StratifiedPatientSplitter(self.train_fraction).split(y, random_state)
        self.train(X.loc[split.train_ids], y.loc[split.train_ids], random_state)
        evaluation = self.evaluate(X.loc[split.test_ids], y.loc[split.test_ids])
        return split, evaluation


# =====================
# SurvivalBiomarkerPipeline
# =====================
@dataclass
class PipelineResult:
    """Everything a run hands to reporting."""
    correlation_report: Dict[str, float]
    selected_features: List[str]
    split: TrainTestSplit
    evaluation: EvaluationResult
    cv_metrics: Dict[str, float]
    model: RandomForestClassifier = field(repr=False)
    data_quality: Dict[str, List[str]] = field(default_factory=dict)

    def metrics(self) -> Dict[str, float]:
        ev = self.evaluation
        return {
            **self.cv_metrics,
            'sensitivity': ev.sensitivity,
            'specificity': ev.specificity,
            'true_positives': ev.true_positives,
            'false_negatives': ev.false_negatives,
            'false_positives': ev.false_positives,
            'true_negatives': ev.true_negatives,
            'n_selected_features': len(self.selected_features),
        }


class SurvivalBiomarkerPipeline:
    """End-to-end blood-test survival analysis for one static batch."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.schema = RecordSchema(self.config.record_schema)
        self.experiment_tracker = setup_experiment_tracking(self.config)

    # ---------- Data ----------
    def load_records(self, data_path: Union[str, Path]) -> RecordStore:
        store = RecordStore.from_frame(load_data(data_path, self.schema), self.schema)
        logger.info(f"Loaded {store.n_records} test rows with {len(store.biomarkers)} biomarkers")
        return store

    def validate_data(self, store: RecordStore) -> Dict[str, List[str]]:
        logger.info("Validating data quality...")
        validator = DataValidator()
        validator.setup_blood_test_rules(list(store.biomarkers))
        violations = validator.validate(store.frame)
        if violations:
            for feature, issues in violations.items():
                logger.warning(f"Data quality issue in '{feature}': {'; '.join(issues)}")
        else:
            logger.info("Data validation passed")
        return violations

    # ---------- Orchestration ----------
    def run(self, store: RecordStore) -> PipelineResult:
        """Run every stage on an in-memory RecordStore. Nothing is written."""
        start_time = time.time()
        random_state = np.random.RandomState(self.config.random_seed)

        violations = self.validate_data(store)
        imputed = impute_records(store)

        aggregator = PatientAggregator()
        patients = aggregator.patient_records(imputed)
        profiles = aggregator.biomarker_profiles(imputed, patients=patients)

        selector = CorrelationFeatureSelector(corr_val=self.config.corr_val)
        selector.fit(profiles[list(imputed.biomarkers)], profiles[OUTCOME])

        harness = ClassifierHarness.from_config(self.config)
        split, evaluation = harness.run(patients, profiles, selector.selected_features_, random_state)

        elapsed_time = time.time() - start_time
        logger.info(f"Pipeline finished in {elapsed_time:.2f} seconds")
        return PipelineResult(
            correlation_report=selector.correlation_report_,
            selected_features=list(selector.selected_features_),
            split=split,
            evaluation=evaluation,
            cv_metrics=harness.cv_metrics_,
            model=harness.model,
            data_quality=violations,
        )

    def save_artifacts(self, result: PipelineResult, output_dir: Union[str, Path]):
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        logger.info(f"Saving artifacts to {out}")

        joblib.dump(result.model, out / "model.joblib")

        (out / "metrics.yaml").write_text(yaml.dump(_to_builtin(result.metrics())), encoding="utf-8")
        (out / "correlation_report.yaml").write_text(
            yaml.dump(_to_builtin(result.correlation_report)), encoding="utf-8"
        )
        (out / "selected_features.txt").write_text("\n".join(result.selected_features), encoding="utf-8")
        (out / "split.yaml").write_text(yaml.dump(result.split.to_dict()), encoding="utf-8")
        (out / "pipeline_config.yaml").write_text(yaml.dump(self.config.to_dict()), encoding="utf-8")

        pd.DataFrame(result.evaluation.variable_importance, columns=["feature", "importance"]) \
            .to_csv(out / "variable_importance.csv", index=False)
        pd.DataFrame(
            result.evaluation.confusion_matrix,
            index=[f"actual_{c}" for c in CLASS_ORDER],
            columns=[f"predicted_{c}" for c in CLASS_ORDER],
        ).to_csv(out / "confusion_matrix.csv")

        logger.info("Artifacts saved successfully")

    def run_pipeline(self, data_path: Union[str, Path], output_dir: Union[str, Path]) -> PipelineResult:
        """Load, analyse, and only then write artifacts; a failure leaves no output."""
        logger.info("Starting blood-test survival pipeline...")
        tracker = self.experiment_tracker

        with tracked_run(tracker, "bloodtest_survival"):
            if tracker is not None:
                tracker.log_params(self.config.to_dict())

            store = self.load_records(data_path)
            result = self.run(store)
            self.save_artifacts(result, output_dir)

            if tracker is not None:
                tracker.log_metrics(result.metrics())
                tracker.log_dict(_to_builtin(result.correlation_report), "correlation_report.yaml")
                tracker.log_dict(result.evaluation.to_dict(), "evaluation.yaml")
                tracker.log_model(result.model, "model")
                tracker.log_artifacts(str(output_dir))

        logger.info(f"Sensitivity: {result.evaluation.sensitivity:.4f}, "
                    f"specificity: {result.evaluation.specificity:.4f}")
        return result


# =====================
# CLI entrypoint
# =====================

def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Blood-test biomarker survival analysis")
    parser.add_argument("--data", type=str, required=True, help="Path to test records (CSV or Parquet)")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument("--output", type=str, default="./models", help="Output directory for artifacts")
    parser.add_argument("--seed", type=int, default=None, help="Override random_seed from the configuration")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    config = load_config(args.config) if args.config else PipelineConfig()
    if args.seed is not None:
        config = config.model_copy(update={'random_seed': args.seed})

    pipeline = SurvivalBiomarkerPipeline(config)
    result = pipeline.run_pipeline(args.data, args.output)

    print("Selected biomarkers:", ", ".join(result.selected_features) or "(none)")
    print(f"Sensitivity {result.evaluation.sensitivity:.3f}, specificity {result.evaluation.specificity:.3f}")
    print("Artifacts in:", args.output)


if __name__ == "__main__":
    main()
