"""
Data preprocessing: temporal gap filling of raw test rows, population-median
fallback for the patient-level modeling table, and data-quality validation.
"""

import pandas as pd
import numpy as np
import logging
import time
from typing import Dict, List, Optional
from pandas.api import types as ptypes
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.impute import SimpleImputer

from ..exceptions import DataIntegrityError, SchemaMismatchError
from .records import OBSERVED_AT, PATIENT_ID, RECORD_FIELDS, RecordStore

logger = logging.getLogger(__name__)


def backfill_patient_ids(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Carry the last seen patient_id forward into rows that lack one.

    Identifiers are recorded once per block of consecutive rows, so rows are
    scanned in their original order, not in time order.
    """
    out = frame.copy()
    if out.empty:
        return out

    ids = out[PATIENT_ID]
    if pd.isna(ids.iloc[0]):
        raise DataIntegrityError("First row has no patient identifier to carry forward",
                                 column=PATIENT_ID)

    n_missing = int(ids.isna().sum())
    filled = ids.ffill()
    # ids read next to nulls arrive as floats (1.0, 2.0, ...)
    if ptypes.is_float_dtype(filled) and (filled % 1 == 0).all():
        filled = filled.astype("int64")
    out[PATIENT_ID] = filled

    if n_missing:
        logger.info(f"Carried patient_id forward into {n_missing} rows")
    return out


def fill_biomarker_gaps(frame: pd.DataFrame, biomarkers: List[str]) -> pd.DataFrame:
    """
    Forward-fill then backward-fill each biomarker within each patient,
    following observation time. A biomarker never measured for a patient
    stays null. Row order of the result matches the input.
    """
    out = frame.copy()
    if out.empty or not biomarkers:
        return out

    # stable sort keeps file order for rows sharing a timestamp
    ordered = out.sort_values(OBSERVED_AT, kind="mergesort", na_position="last")
    forward = ordered.groupby(PATIENT_ID, sort=False)[biomarkers].ffill()
    filled = forward.groupby(ordered[PATIENT_ID], sort=False).bfill()

    n_before = int(out[biomarkers].isna().sum().sum())
    out[biomarkers] = filled.reindex(out.index)[biomarkers].to_numpy()
    n_after = int(out[biomarkers].isna().sum().sum())
    logger.info(f"Filled {n_before - n_after} biomarker gaps; {n_after} values never measured remain null")
    return out


class TemporalGapImputer(BaseEstimator, TransformerMixin):
    """Fill identifier gaps and per-patient biomarker gaps in raw test rows."""

    def __init__(self, biomarkers: Optional[List[str]] = None):
        """
        Initialize the imputer.

        Args:
            biomarkers: Biomarker columns to fill; every non-record column
                when omitted
        """
        self.biomarkers = biomarkers

    def fit(self, X: pd.DataFrame, y=None):
        if self.biomarkers is not None:
            self.biomarkers_ = list(self.biomarkers)
        else:
            self.biomarkers_ = [c for c in X.columns if c not in RECORD_FIELDS]
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        start_time = time.time()
        logger.info(f"Imputing {len(X)} test rows over {len(self.biomarkers_)} biomarkers...")

        X_transformed = backfill_patient_ids(X)
        X_transformed = fill_biomarker_gaps(X_transformed, self.biomarkers_)

        elapsed_time = time.time() - start_time
        logger.info(f"Temporal imputation completed in {elapsed_time:.2f} seconds")
        return X_transformed


def impute_records(store: RecordStore) -> RecordStore:
    """Return a new, fully identified and gap-filled RecordStore."""
    imputer = TemporalGapImputer(biomarkers=list(store.biomarkers))
    return store.with_frame(imputer.fit_transform(store.frame))


class MissingValueHandler(BaseEstimator, TransformerMixin):
    """
    Replace nulls left in numeric features with each feature's population
    median. Used on the one-row-per-patient table, where temporal context
    is gone.
    """

    def __init__(self, strategy: str = 'median'):
        self.strategy = strategy

    def fit(self, X: pd.DataFrame, y=None):
        """Learn one median per numeric feature."""
        start_time = time.time()
        self.numeric_features_ = X.select_dtypes(include=[np.number]).columns.tolist()

        empty = [col for col in self.numeric_features_ if X[col].isna().all()]
        if empty:
            raise DataIntegrityError("Feature has no observed values to take a median from",
                                     column=empty[0])

        self.imputer_ = SimpleImputer(strategy=self.strategy)
        if self.numeric_features_:
            self.imputer_.fit(X[self.numeric_features_])
            self.statistics_ = dict(zip(self.numeric_features_, self.imputer_.statistics_.tolist()))
        else:
            self.statistics_ = {}

        elapsed_time = time.time() - start_time
        logger.info(f"Fitted {self.strategy} fallback for {len(self.numeric_features_)} features "
                    f"in {elapsed_time:.2f} seconds")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in self.numeric_features_ if col not in X.columns]
        if missing:
            raise SchemaMismatchError(f"Columns seen during fit are absent: {missing}", column=missing[0])

        X_transformed = X.copy()
        if not self.numeric_features_:
            return X_transformed

        counts = X_transformed[self.numeric_features_].isna().sum()
        for col, count in counts[counts > 0].items():
            logger.info(f"Filling {count} missing '{col}' values with {self.strategy} "
                        f"{self.statistics_[col]:.4g}")

        X_transformed[self.numeric_features_] = self.imputer_.transform(X_transformed[self.numeric_features_])
        return X_transformed


class DataValidator:
    """Rule-based data-quality checks. Violations are reported, not raised."""

    def __init__(self):
        self.validation_rules: Dict[str, List[Dict]] = {}

    def add_rule(self, feature: str, rule_type: str, **kwargs):
        """Add validation rule for a feature."""
        if rule_type not in ('range', 'categorical', 'missing_rate'):
            raise ValueError(f"Unknown rule type: {rule_type}")
        self.validation_rules.setdefault(feature, []).append({'type': rule_type, 'params': kwargs})

    def validate(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """Validate dataframe against rules."""
        violations = {}

        for feature, rules in self.validation_rules.items():
            if feature not in df.columns:
                continue

            feature_violations = []
            for rule in rules:
                check = getattr(self, f"_check_{rule['type']}")
                feature_violations.extend(check(df[feature], **rule['params']))

            if feature_violations:
                violations[feature] = feature_violations

        return violations

    @staticmethod
    def _check_range(values: pd.Series, min=None, max=None) -> List[str]:
        found = []
        if min is not None:
            below = int((values < min).sum())
            if below:
                found.append(f"{below} values below minimum {min}")
        if max is not None:
            above = int((values > max).sum())
            if above:
                found.append(f"{above} values above maximum {max}")
        return found

    @staticmethod
    def _check_categorical(values: pd.Series, allowed_values=()) -> List[str]:
        invalid = int((~values.dropna().isin(allowed_values)).sum())
        return [f"{invalid} invalid categorical values"] if invalid else []

    @staticmethod
    def _check_missing_rate(values: pd.Series, max_rate: float = 0.1) -> List[str]:
        missing_rate = float(values.isnull().mean()) if len(values) else 0.0
        if missing_rate > max_rate:
            return [f"Missing rate {missing_rate:.2%} exceeds {max_rate:.2%}"]
        return []

    def setup_blood_test_rules(self, biomarkers: List[str]):
        """Setup validation rules for canonical blood-test records."""
        self.add_rule('age', 'range', min=0, max=120)
        self.add_rule('gender', 'categorical', allowed_values=['male', 'female'])
        self.add_rule('outcome', 'categorical', allowed_values=['survived', 'died'])

        # Concentrations, counts and percentages are never negative
        for biomarker in biomarkers:
            self.add_rule(biomarker, 'range', min=0)

        for feature in ['age', 'gender', 'outcome']:
            self.add_rule(feature, 'missing_rate', max_rate=0.01)
