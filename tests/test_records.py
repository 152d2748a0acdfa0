"""
Tests for raw record ingestion: name normalization, schema validation,
loading and the RecordStore.
"""

import pytest
import pandas as pd
import numpy as np
from dataclasses import FrozenInstanceError

from bloodtest_survival.config import SchemaConfig
from bloodtest_survival.exceptions import SchemaMismatchError
from bloodtest_survival.pipeline.records import (
    RecordSchema, RecordStore, load_data, normalize_column_name, normalize_column_names,
)


class TestColumnNormalization:
    """Test column-name normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("PATIENT_ID", "patient_id"),
        ("Admission time", "admission_time"),
        ("(%)lymphocyte", "lymphocyte"),
        ("neutrophils(%)", "neutrophils"),
        ("High sensitivity C-reactive protein", "high_sensitivity_c_reactive_protein"),
        ("  Serum  chloride ", "serum_chloride"),
    ])
    def test_normalize_column_name(self, raw, expected):
        assert normalize_column_name(raw) == expected

    def test_collision_rejected(self):
        """Two sources that normalize to one name are an error, not a silent overwrite."""
        with pytest.raises(SchemaMismatchError) as exc_info:
            normalize_column_names(["Age", "age "])
        assert exc_info.value.column == "age"

    def test_empty_name_rejected(self):
        with pytest.raises(SchemaMismatchError):
            normalize_column_names(["age", "(%)"])


class TestRecordSchema:
    """Test explicit schema validation."""

    def test_validate_decodes_codes(self, sample_frame):
        canonical, biomarkers = RecordSchema().validate(sample_frame)

        assert biomarkers == ['lactate_dehydrogenase', 'lymphocyte']
        assert list(canonical['gender']) == ['male'] * 3 + ['female'] * 2 + ['male']
        assert list(canonical['outcome']) == ['survived'] * 3 + ['died'] * 2 + ['survived']
        assert 'observed_at' in canonical.columns
        assert canonical['lactate_dehydrogenase'].dtype == float

    def test_decoded_labels_accepted(self, sample_frame):
        sample_frame['gender'] = sample_frame['gender'].map({1: 'male', 2: 'female'})
        canonical, _ = RecordSchema().validate(sample_frame)
        assert set(canonical['gender']) == {'male', 'female'}

    def test_null_code_stays_null(self, sample_frame):
        sample_frame['gender'] = sample_frame['gender'].astype(float)
        sample_frame.loc[0, 'gender'] = np.nan
        canonical, _ = RecordSchema().validate(sample_frame)
        assert pd.isna(canonical.loc[0, 'gender'])

    def test_unknown_code(self, sample_frame):
        sample_frame.loc[0, 'gender'] = 3
        with pytest.raises(SchemaMismatchError) as exc_info:
            RecordSchema().validate(sample_frame)
        assert exc_info.value.column == 'gender'

    def test_missing_required_column(self, sample_frame):
        with pytest.raises(SchemaMismatchError) as exc_info:
            RecordSchema().validate(sample_frame.drop(columns=['discharge_time']))
        assert exc_info.value.column == 'discharge_time'

    def test_timestamp_must_be_datetime(self, sample_frame):
        sample_frame['re_date'] = sample_frame['re_date'].astype(str)
        with pytest.raises(SchemaMismatchError) as exc_info:
            RecordSchema().validate(sample_frame)
        assert exc_info.value.column == 're_date'

    def test_biomarker_must_be_numeric(self, sample_frame):
        sample_frame['lymphocyte'] = ['low'] * len(sample_frame)
        with pytest.raises(SchemaMismatchError) as exc_info:
            RecordSchema().validate(sample_frame)
        assert exc_info.value.column == 'lymphocyte'

    def test_age_must_be_numeric(self, sample_frame):
        sample_frame['age'] = sample_frame['age'].astype(str)
        with pytest.raises(SchemaMismatchError):
            RecordSchema().validate(sample_frame)

    def test_explicit_biomarker_list(self, sample_frame):
        schema = RecordSchema(SchemaConfig(biomarkers=['lymphocyte']))
        canonical, biomarkers = schema.validate(sample_frame)
        assert biomarkers == ['lymphocyte']
        assert 'lactate_dehydrogenase' not in canonical.columns

    def test_declared_biomarker_missing(self, sample_frame):
        schema = RecordSchema(SchemaConfig(biomarkers=['ferritin']))
        with pytest.raises(SchemaMismatchError) as exc_info:
            schema.validate(sample_frame)
        assert exc_info.value.column == 'ferritin'

    @pytest.mark.parametrize("name", ['age_group', 'length_of_stay_days'])
    def test_biomarker_named_like_derived_column(self, sample_frame, name):
        with pytest.raises(SchemaMismatchError) as exc_info:
            RecordSchema().validate(sample_frame.assign(**{name: 1.0}))
        assert exc_info.value.column == name

    def test_derived_name_rejected_at_ingestion(self, record_factory):
        with pytest.raises(SchemaMismatchError):
            record_factory([{'patient_id': 1, 'age_group': 1.0}, {'patient_id': 2, 'age_group': 2.0}])

    def test_custom_source_names(self, sample_frame):
        renamed = sample_frame.rename(columns={'re_date': 'sampled_at'})
        schema = RecordSchema(SchemaConfig(observed_at='sampled_at'))
        canonical, _ = schema.validate(renamed)
        assert 'observed_at' in canonical.columns


class TestRecordStore:
    """Test the RecordStore holder."""

    def test_from_frame(self, sample_store):
        assert sample_store.n_records == 6
        assert sample_store.n_patients == 3
        assert sample_store.biomarkers == ('lactate_dehydrogenase', 'lymphocyte')

    def test_with_frame_returns_new_store(self, sample_store):
        other = sample_store.with_frame(sample_store.frame.iloc[:2])
        assert other is not sample_store
        assert sample_store.n_records == 6
        assert other.n_records == 2
        assert other.biomarkers == sample_store.biomarkers

    def test_frozen(self, sample_store):
        with pytest.raises(FrozenInstanceError):
            sample_store.frame = pd.DataFrame()


class TestLoadData:
    """Test reading raw exports from disk."""

    def test_load_csv(self, sample_raw_records, temp_directory):
        path = temp_directory / "records.csv"
        sample_raw_records.to_csv(path, index=False)

        df = load_data(path)

        assert 'admission_time' in df.columns
        assert pd.api.types.is_datetime64_any_dtype(df['re_date'])
        store = RecordStore.from_frame(df)
        assert store.n_records == len(sample_raw_records)

    def test_load_parquet(self, sample_raw_records, temp_directory):
        path = temp_directory / "records.parquet"
        sample_raw_records.to_parquet(path, index=False)

        store = RecordStore.from_frame(load_data(path))
        assert store.biomarkers == ('lactate_dehydrogenase', 'lymphocyte')

    def test_unparseable_timestamp(self, sample_raw_records, temp_directory):
        sample_raw_records['RE_DATE'] = sample_raw_records['RE_DATE'].astype(str)
        sample_raw_records.loc[2, 'RE_DATE'] = 'not a date'
        path = temp_directory / "records.csv"
        sample_raw_records.to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError) as exc_info:
            load_data(path)
        assert exc_info.value.column == 're_date'

    def test_unsupported_suffix(self, temp_directory):
        path = temp_directory / "records.xlsx"
        path.write_text("")
        with pytest.raises(ValueError):
            load_data(path)
