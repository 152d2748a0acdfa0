"""
Experiment tracking utilities using MLflow.

Tracking is best-effort: an MLflow failure is logged and never aborts the
analysis.
"""

import time
import mlflow
import logging
from contextlib import nullcontext
from typing import Dict, Any, Optional

from ..config import PipelineConfig, TrackingConfig

logger = logging.getLogger(__name__)


class ExperimentTracker:
    """MLflow experiment tracking wrapper."""

    def __init__(self, config: TrackingConfig):
        """Point MLflow at the configured store and select the experiment."""
        self.config = config
        self.tracking_uri = config.tracking_uri
        self.experiment_name = config.experiment_name

        mlflow.set_tracking_uri(self.tracking_uri)

        experiment = mlflow.get_experiment_by_name(self.experiment_name)
        if experiment is not None and experiment.lifecycle_stage == "deleted":
            # a deleted experiment keeps its name reserved
            self.experiment_name = f"{self.experiment_name}_{int(time.time())}"
            logger.info(f"Experiment was deleted; tracking under {self.experiment_name}")
        mlflow.set_experiment(self.experiment_name)

    def start_run(self, run_name: Optional[str] = None):
        """Start MLflow run."""
        return mlflow.start_run(run_name=run_name)

    def log_params(self, params: Dict[str, Any], prefix: str = ""):
        """Log parameters to MLflow."""
        for key, value in self._flatten_dict(params, prefix).items():
            try:
                mlflow.log_param(key, value)
            except Exception as e:
                logger.warning(f"Failed to log param {key}: {e}")

    def log_metrics(self, metrics: Dict[str, float], step: Optional[int] = None):
        """Log metrics to MLflow."""
        for key, value in metrics.items():
            try:
                mlflow.log_metric(key, value, step=step)
            except Exception as e:
                logger.warning(f"Failed to log metric {key}: {e}")

    def log_artifacts(self, artifact_path: str):
        """Log a directory of artifacts to MLflow."""
        try:
            mlflow.log_artifacts(artifact_path)
        except Exception as e:
            logger.warning(f"Failed to log artifacts: {e}")

    def log_dict(self, dictionary: Dict[str, Any], artifact_file: str):
        """Log dictionary as a YAML/JSON artifact to MLflow."""
        try:
            mlflow.log_dict(dictionary, artifact_file)
            logger.info(f"Dictionary logged as {artifact_file}")
        except Exception as e:
            logger.warning(f"Failed to log dictionary to MLflow: {e}")

    def log_model(self, model, model_name: str, input_example=None):
        """Log a fitted scikit-learn model."""
        try:
            mlflow.sklearn.log_model(model, model_name, input_example=input_example)
        except Exception as e:
            logger.warning(f"Failed to log model: {e}")

    def _flatten_dict(self, d: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
        """Flatten nested dictionary for parameter logging."""
        items = []

        for key, value in d.items():
            new_key = f"{prefix}.{key}" if prefix else str(key)

            if isinstance(value, dict):
                items.extend(self._flatten_dict(value, new_key).items())
            else:
                # MLflow params are strings
                items.append((new_key, str(value)))

        return dict(items)


def setup_experiment_tracking(config: PipelineConfig) -> Optional[ExperimentTracker]:
    """Return a tracker for the configured backend, or None when tracking is off or unreachable."""
    if config.tracking.backend == 'mlflow':
        try:
            return ExperimentTracker(config.tracking)
        except Exception as e:
            logger.warning(f"MLflow tracking unavailable, continuing without it: {e}")
            return None
    logger.info("Experiment tracking disabled")
    return None


def tracked_run(tracker: Optional[ExperimentTracker], run_name: Optional[str] = None):
    """Context manager for a tracked run; a no-op without a tracker."""
    if tracker is None:
        return nullcontext()
    try:
        return tracker.start_run(run_name)
    except Exception as e:
        logger.warning(f"Failed to start MLflow run: {e}")
        return nullcontext()
