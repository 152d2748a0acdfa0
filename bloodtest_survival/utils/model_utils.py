"""
Model utilities for evaluation: confusion matrix, sensitivity/specificity
and variable-importance ranking.

"died" is the positive class throughout, so a false negative is a death
predicted as survival.
"""

import numpy as np
import pandas as pd
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Sequence, Tuple
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix
import logging

logger = logging.getLogger(__name__)

POSITIVE_CLASS = 'died'
NEGATIVE_CLASS = 'survived'
CLASS_ORDER = [POSITIVE_CLASS, NEGATIVE_CLASS]


@dataclass
class EvaluationResult:
    """
    Held-out evaluation of the trained classifier.

    confusion_matrix rows are the actual class and columns the predicted
    class, both ordered (died, survived): [[TP, FN], [FP, TN]].
    """
    confusion_matrix: List[List[int]]
    sensitivity: float
    specificity: float
    variable_importance: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def true_positives(self) -> int:
        return self.confusion_matrix[0][0]

    @property
    def false_negatives(self) -> int:
        return self.confusion_matrix[0][1]

    @property
    def false_positives(self) -> int:
        return self.confusion_matrix[1][0]

    @property
    def true_negatives(self) -> int:
        return self.confusion_matrix[1][1]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['variable_importance'] = [[name, score] for name, score in self.variable_importance]
        return data


def _safe_ratio(numerator: int, denominator: int) -> float:
    return float(numerator) / denominator if denominator > 0 else 0.0


def impurity_importance(forest) -> np.ndarray:
    """Mean impurity decrease per feature across the forest's trees, not rescaled to sum to 1."""
    per_tree = [tree.tree_.compute_feature_importances(normalize=False) for tree in forest.estimators_]
    return np.mean(per_tree, axis=0)


class ModelEvaluator:
    """Evaluation metrics with 'died' as the positive class."""

    def confusion_matrix(self, y_true: Sequence[str], y_pred: Sequence[str]) -> np.ndarray:
        """2x2 counts, rows actual / columns predicted, ordered (died, survived)."""
        return confusion_matrix(y_true, y_pred, labels=CLASS_ORDER)

    def calculate_metrics(self, y_true: Sequence[str], y_pred: Sequence[str]) -> Dict[str, float]:
        """
        Calculate classification metrics for one set of predictions.

        Args:
            y_true: True outcome labels
            y_pred: Predicted outcome labels

        Returns:
            Dictionary of metrics
        """
        (tp, fn), (fp, tn) = self.confusion_matrix(y_true, y_pred)

        metrics: Dict[str, float] = {}
        metrics['accuracy'] = float(accuracy_score(y_true, y_pred))
        metrics['kappa'] = float(cohen_kappa_score(y_true, y_pred, labels=CLASS_ORDER))
        metrics['sensitivity'] = _safe_ratio(tp, tp + fn)
        metrics['specificity'] = _safe_ratio(tn, tn + fp)
        metrics['ppv'] = _safe_ratio(tp, tp + fp)  # Positive Predictive Value
        metrics['npv'] = _safe_ratio(tn, tn + fn)  # Negative Predictive Value

        metrics['true_positives'] = int(tp)
        metrics['false_negatives'] = int(fn)
        metrics['false_positives'] = int(fp)
        metrics['true_negatives'] = int(tn)
        return metrics

    @staticmethod
    def rank_importance(feature_names: Sequence[str], scores: Sequence[float]) -> List[Tuple[str, float]]:
        """Features by descending score; equal scores keep feature order."""
        ranked = pd.Series(np.asarray(scores, dtype=float), index=list(feature_names))
        ranked = ranked.sort_values(ascending=False, kind='mergesort')
        return [(str(name), float(score)) for name, score in ranked.items()]

    def evaluate(self,
                 y_true: Sequence[str],
                 y_pred: Sequence[str],
                 feature_names: Sequence[str],
                 importances: Sequence[float]) -> EvaluationResult:
        """Build the EvaluationResult for a held-out partition."""
        matrix = self.confusion_matrix(y_true, y_pred)
        (tp, fn), (fp, tn) = matrix

        result = EvaluationResult(
            confusion_matrix=matrix.astype(int).tolist(),
            sensitivity=_safe_ratio(tp, tp + fn),
            specificity=_safe_ratio(tn, tn + fp),
            variable_importance=self.rank_importance(feature_names, importances),
        )
        logger.info(f"Held-out evaluation: TP={tp} FN={fn} FP={fp} TN={tn}, "
                    f"sensitivity={result.sensitivity:.3f}, specificity={result.specificity:.3f}")
        return result


def summarize_cv_scores(fold_metrics: List[Dict[str, float]],
                        names: Sequence[str] = ('accuracy', 'kappa', 'sensitivity', 'specificity')) -> Dict[str, float]:
    """Mean and standard deviation of per-fold metrics as cv_<name> / cv_<name>_std."""
    summary: Dict[str, float] = {}
    for name in names:
        values = np.array([m[name] for m in fold_metrics], dtype=float)
        summary[f"cv_{name}"] = float(np.nanmean(values)) if len(values) else float('nan')
        summary[f"cv_{name}_std"] = float(np.nanstd(values)) if len(values) else float('nan')
    return summary
