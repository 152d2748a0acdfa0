"""Utility modules for the pipeline."""

from .experiment_tracking import ExperimentTracker, setup_experiment_tracking
from .model_utils import EvaluationResult, ModelEvaluator, summarize_cv_scores

__all__ = [
    'ExperimentTracker',
    'setup_experiment_tracking',
    'EvaluationResult',
    'ModelEvaluator',
    'summarize_cv_scores',
]
