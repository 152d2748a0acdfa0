"""Pipeline stages: records, imputation, aggregation, selection, training."""

from .records import RecordSchema, RecordStore, load_data, normalize_column_names
from .preprocessing import (
    TemporalGapImputer,
    MissingValueHandler,
    DataValidator,
    impute_records,
)
from .aggregation import PatientAggregator
from .feature_engineering import CorrelationFeatureSelector
from .training_pipeline import (
    ClassifierHarness,
    StratifiedPatientSplitter,
    SurvivalBiomarkerPipeline,
)

__all__ = [
    'RecordSchema',
    'RecordStore',
    'load_data',
    'normalize_column_names',
    'TemporalGapImputer',
    'MissingValueHandler',
    'DataValidator',
    'impute_records',
    'PatientAggregator',
    'CorrelationFeatureSelector',
    'ClassifierHarness',
    'StratifiedPatientSplitter',
    'SurvivalBiomarkerPipeline',
]
