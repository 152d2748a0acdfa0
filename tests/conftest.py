"""Test configuration and fixtures."""

import pytest
import pandas as pd
import numpy as np
import tempfile
from pathlib import Path

from bloodtest_survival.config import PipelineConfig
from bloodtest_survival.data_generation import BloodTestDataGenerator
from bloodtest_survival.pipeline.records import RecordStore, normalize_column_names

RECORD_DEFAULTS = {
    'patient_id': 1,
    're_date': '2020-01-02 08:00',
    'gender': 1,
    'age': 50,
    'admission_time': '2020-01-01 08:00',
    'discharge_time': '2020-01-06 08:00',
    'outcome': 0,
}


@pytest.fixture
def record_factory():
    """Build a RecordStore from partial row dicts; unspecified fields take defaults."""
    def _build(rows):
        df = pd.DataFrame([{**RECORD_DEFAULTS, **row} for row in rows])
        for col in ['re_date', 'admission_time', 'discharge_time']:
            df[col] = pd.to_datetime(df[col])
        for col in df.columns:
            if col not in RECORD_DEFAULTS:
                df[col] = df[col].astype(float)
        return RecordStore.from_frame(df)
    return _build


@pytest.fixture
def sample_raw_records():
    """Raw export excerpt: ids only on the first row of each block, codes not decoded."""
    return pd.DataFrame({
        'PATIENT_ID': [1, np.nan, np.nan, 2, np.nan, 3],
        'RE_DATE': pd.to_datetime(['2020-01-31 23:59', '2020-02-01 10:00', '2020-02-03 09:00',
                                   '2020-02-05 08:00', '2020-02-06 08:00', '2020-02-07 12:00']),
        'age': [73, 73, 73, 61, 61, 29],
        'gender': [1, 1, 1, 2, 2, 1],
        'Admission time': pd.to_datetime(['2020-01-31 01:09'] * 3 + ['2020-02-04 21:39'] * 2
                                         + ['2020-02-07 10:00']),
        'Discharge time': pd.to_datetime(['2020-02-17 12:40'] * 3 + ['2020-02-19 12:59'] * 2
                                         + ['2020-02-10 10:00']),
        'outcome': [0, 0, 0, 1, 1, 0],
        'Lactate dehydrogenase': [np.nan, 306.0, np.nan, np.nan, 1000.0, np.nan],
        '(%)lymphocyte': [18.5, np.nan, 22.0, 2.1, np.nan, np.nan],
    })


@pytest.fixture
def sample_frame(sample_raw_records):
    """sample_raw_records with ingestion-normalized column names."""
    df = sample_raw_records.copy()
    df.columns = normalize_column_names(df.columns)
    return df


@pytest.fixture
def sample_store(sample_frame):
    return RecordStore.from_frame(sample_frame)


def _generated_frame(n_patients=100, mortality=0.46, seed=7, **kwargs):
    """Synthetic raw export with normalized column names."""
    df = BloodTestDataGenerator(seed=seed, **kwargs).generate_dataset(n_patients=n_patients, mortality=mortality)
    df.columns = normalize_column_names(df.columns)
    return df


@pytest.fixture
def synthetic_frame():
    """Patchy synthetic export: 100 patients, gaps and never-measured biomarkers."""
    return _generated_frame(n_patients=100, missing_rate=0.3, never_measured_rate=0.1)


@pytest.fixture
def complete_store():
    """100 synthetic patients with every biomarker present on every row."""
    return RecordStore.from_frame(_generated_frame(n_patients=100, missing_rate=0.0, never_measured_rate=0.0))


@pytest.fixture
def fast_config():
    """Small CV grid so end-to-end tests stay quick."""
    return PipelineConfig(cv_folds=3, cv_repeats=2, ensemble_size=5, random_seed=11)


@pytest.fixture
def temp_directory():
    """Create temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def frame_factory():
    """Synthetic normalized export with custom size, mortality and missingness."""
    return _generated_frame
