"""
Blood-Test Survival Biomarker Pipeline

Identifies the blood biomarkers that best separate survivors from
non-survivors in hospital blood-test records, and validates them with a
cross-validated random forest.
"""

__version__ = "1.0.0"

from .config import PipelineConfig, load_config
from .exceptions import (
    BiomarkerPipelineError,
    DataIntegrityError,
    InconsistentPatientDataError,
    InsufficientDataError,
    SchemaMismatchError,
)
from .data_generation import BloodTestDataGenerator
from .pipeline import (
    RecordStore,
    TemporalGapImputer,
    PatientAggregator,
    CorrelationFeatureSelector,
    ClassifierHarness,
    SurvivalBiomarkerPipeline,
)
from .utils import ExperimentTracker, ModelEvaluator

__all__ = [
    'PipelineConfig',
    'load_config',
    'BiomarkerPipelineError',
    'DataIntegrityError',
    'InconsistentPatientDataError',
    'InsufficientDataError',
    'SchemaMismatchError',
    'BloodTestDataGenerator',
    'RecordStore',
    'TemporalGapImputer',
    'PatientAggregator',
    'CorrelationFeatureSelector',
    'ClassifierHarness',
    'SurvivalBiomarkerPipeline',
    'ExperimentTracker',
    'ModelEvaluator',
]
