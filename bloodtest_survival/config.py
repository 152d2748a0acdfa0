"""
Pipeline configuration.

Options are validated once, up front, so a bad value fails before any data
is read.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class SchemaConfig(BaseModel):
    """Source column names and code maps for the raw test table."""

    patient_id: str = Field("patient_id", description="Patient identifier column")
    observed_at: str = Field("re_date", description="Observation timestamp column")
    gender: str = Field("gender", description="Gender code column")
    age: str = Field("age", description="Age column (years)")
    admission_time: str = Field("admission_time", description="Admission timestamp column")
    discharge_time: str = Field("discharge_time", description="Discharge timestamp column")
    outcome: str = Field("outcome", description="Outcome code column")
    gender_codes: Dict[int, str] = Field(default_factory=lambda: {1: "male", 2: "female"})
    outcome_codes: Dict[int, str] = Field(default_factory=lambda: {0: "survived", 1: "died"})
    biomarkers: Optional[List[str]] = Field(
        None, description="Explicit biomarker columns; all remaining columns when omitted"
    )

    @field_validator("gender_codes")
    @classmethod
    def validate_gender_codes(cls, v):
        """Gender codes must decode to exactly male/female."""
        if set(v.values()) != {"male", "female"}:
            raise ValueError("gender_codes must map onto 'male' and 'female'")
        return v

    @field_validator("outcome_codes")
    @classmethod
    def validate_outcome_codes(cls, v):
        """Outcome codes must decode to exactly survived/died."""
        if set(v.values()) != {"survived", "died"}:
            raise ValueError("outcome_codes must map onto 'survived' and 'died'")
        return v


class TrackingConfig(BaseModel):
    """Experiment tracking settings."""

    backend: str = Field("none", description="'mlflow' or 'none'")
    tracking_uri: str = Field("file:./mlruns", description="MLflow tracking URI")
    experiment_name: str = Field("bloodtest_survival", description="MLflow experiment name")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("mlflow", "none"):
            raise ValueError("backend must be 'mlflow' or 'none'")
        return v


class PipelineConfig(BaseModel):
    """Recognized pipeline options with their defaults."""

    corr_val: float = Field(0.6, gt=0.0, le=1.0, description="Feature-selection correlation threshold")
    train_fraction: float = Field(0.7, gt=0.0, lt=1.0, description="Share of patients used for training")
    cv_folds: int = Field(10, ge=2, description="Cross-validation folds")
    cv_repeats: int = Field(5, ge=1, description="Cross-validation repeats")
    ensemble_size: int = Field(10, ge=1, description="Trees in the random forest")
    random_seed: int = Field(42, description="Seed for the single run-wide random generator")
    n_jobs: int = Field(1, description="Parallel jobs for tree building; does not change results")
    record_schema: SchemaConfig = Field(default_factory=SchemaConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict view for YAML dumps and parameter logging."""
        return self.model_dump()


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """Load and validate a YAML configuration file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    config = PipelineConfig(**raw)
    logger.info(f"Loaded configuration from {path}")
    return config
