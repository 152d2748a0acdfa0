"""
Feature Selection

Correlation-driven biomarker selection: keep biomarkers strongly correlated
with survival, then drop those that duplicate a stronger kept biomarker.

This is a greedy heuristic, not an optimal subset search. Its result is
fully determined by the data, the threshold and the column order.
"""

import pandas as pd
import numpy as np
import logging
import time
from typing import Dict, List
from sklearn.base import BaseEstimator, TransformerMixin

from ..exceptions import SchemaMismatchError
from .records import OUTCOME

logger = logging.getLogger(__name__)

OUTCOME_CODING = {'survived': 1.0, 'died': 0.0}

# |r| values equal to this many decimals count as ties
_RANK_DECIMALS = 10


def encode_outcome(outcome: pd.Series) -> pd.Series:
    """Numeric outcome for correlation: survived=1, died=0."""
    unknown = set(outcome.dropna().unique()) - set(OUTCOME_CODING)
    if unknown:
        raise SchemaMismatchError(f"Unknown outcome labels: {sorted(map(str, unknown))}", column=OUTCOME)
    return outcome.map(OUTCOME_CODING).astype(float)


def outcome_correlations(X: pd.DataFrame, y_numeric: pd.Series) -> pd.Series:
    """
    Pearson r of every numeric column against the outcome.

    Each column uses only the rows where both it and the outcome are present,
    so different columns may rest on different rows.
    """
    numeric_features = X.select_dtypes(include=[np.number]).columns.tolist()
    if not numeric_features:
        return pd.Series(dtype=float)
    return X[numeric_features].corrwith(y_numeric.reindex(X.index))


def deduplicate_correlated(outcome_corr: pd.Series,
                           feature_corr: pd.DataFrame,
                           threshold: float) -> List[str]:
    """
    Greedy de-duplication of mutually correlated features.

    Candidates are visited from strongest to weakest |r| against the outcome,
    ties resolved by their order in `outcome_corr`. A candidate is kept unless
    its |r| with an already-kept feature reaches `threshold`.

    Returns:
        Kept feature names, strongest first
    """
    strength = outcome_corr.abs().round(_RANK_DECIMALS)
    ranked = sorted(outcome_corr.index, key=lambda name: -strength[name])

    kept: List[str] = []
    for name in ranked:
        partner = next((k for k in kept if abs(feature_corr.loc[name, k]) >= threshold), None)
        if partner is None:
            kept.append(name)
        else:
            logger.info(f"Dropping '{name}': |r|={abs(feature_corr.loc[name, partner]):.3f} "
                        f"with kept '{partner}'")
    return kept


class CorrelationFeatureSelector(BaseEstimator, TransformerMixin):
    """Threshold and de-duplicate biomarkers by correlation with the outcome."""

    def __init__(self, corr_val: float = 0.6):
        """
        Initialize feature selector.

        Args:
            corr_val: Minimum |r| against the outcome to keep a biomarker, and
                the |r| between two biomarkers at which the weaker is dropped
        """
        self.corr_val = corr_val

    def fit(self, X: pd.DataFrame, y: pd.Series):
        """
        Fit feature selector.

        Args:
            X: One row per patient, one numeric column per biomarker
            y: Outcome labels ('survived'/'died') aligned with X
        """
        start_time = time.time()
        logger.info(f"Selecting biomarkers with |r| >= {self.corr_val}")

        corr = outcome_correlations(X, encode_outcome(y))
        self.correlation_report_: Dict[str, float] = {name: float(r) for name, r in corr.items()}

        passing = corr[corr.abs().round(_RANK_DECIMALS) >= self.corr_val]
        logger.info(f"{len(passing)} of {len(corr)} biomarkers pass the threshold")

        feature_corr = X[passing.index.tolist()].corr()
        self.selected_features_ = deduplicate_correlated(passing, feature_corr, self.corr_val)

        elapsed_time = time.time() - start_time
        logger.info(f"Selected {len(self.selected_features_)} features in {elapsed_time:.2f} seconds: "
                    f"{self.selected_features_}")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        """Transform by selecting features."""
        return X[self.selected_features_]

    def get_feature_names_out(self, input_features=None):
        """Get selected feature names."""
        return list(self.selected_features_)
