"""
Raw blood-test records: explicit schema, column-name normalization, loading,
and the immutable RecordStore every pipeline stage consumes.

Column typing is declared here once and checked against incoming data.
Nothing is inferred or coerced silently: a column that does not match its
declaration raises SchemaMismatchError.
"""

import logging
import re
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
from pandas.api import types as ptypes

from ..config import SchemaConfig
from ..exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)

# Canonical field names used inside the pipeline
PATIENT_ID = "patient_id"
OBSERVED_AT = "observed_at"
GENDER = "gender"
AGE = "age"
ADMISSION_TIME = "admission_time"
DISCHARGE_TIME = "discharge_time"
OUTCOME = "outcome"

# Columns the aggregator derives per patient
AGE_GROUP = "age_group"
LENGTH_OF_STAY = "length_of_stay_days"

RECORD_FIELDS = (PATIENT_ID, OBSERVED_AT, GENDER, AGE, ADMISSION_TIME, DISCHARGE_TIME, OUTCOME)
DERIVED_FIELDS = (AGE_GROUP, LENGTH_OF_STAY)
TIMESTAMP_FIELDS = (OBSERVED_AT, ADMISSION_TIME, DISCHARGE_TIME)
DEMOGRAPHIC_FIELDS = (GENDER, AGE, ADMISSION_TIME, DISCHARGE_TIME, OUTCOME)

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_column_name(name) -> str:
    """Lower-case, turn punctuation runs into '_', trim edge underscores."""
    return _NON_ALNUM.sub("_", str(name).strip().lower()).strip("_")


def normalize_column_names(columns: Iterable) -> List[str]:
    """Normalize every column name, rejecting empty results and collisions."""
    columns = list(columns)
    seen: Dict[str, object] = {}
    normalized = []
    for original in columns:
        name = normalize_column_name(original)
        if not name:
            raise SchemaMismatchError(f"Column {original!r} has no usable characters", column=str(original))
        if name in seen:
            raise SchemaMismatchError(
                f"Columns {seen[name]!r} and {original!r} both normalize to {name!r}", column=name
            )
        seen[name] = original
        normalized.append(name)
    return normalized


class RecordSchema:
    """Typed schema of the raw test table."""

    def __init__(self, config: Optional[SchemaConfig] = None):
        self.config = config or SchemaConfig()

    def source_columns(self) -> Dict[str, str]:
        """Map canonical field name -> source column name."""
        return {field: getattr(self.config, field) for field in RECORD_FIELDS}

    def timestamp_source_columns(self) -> List[str]:
        source = self.source_columns()
        return [source[field] for field in TIMESTAMP_FIELDS]

    def biomarker_columns(self, frame: pd.DataFrame) -> List[str]:
        """Declared biomarkers, or every non-field column in source order."""
        field_columns = set(self.source_columns().values())
        if self.config.biomarkers is not None:
            missing = [c for c in self.config.biomarkers if c not in frame.columns]
            if missing:
                raise SchemaMismatchError(f"Declared biomarker columns missing: {missing}", column=missing[0])
            return list(self.config.biomarkers)
        return [c for c in frame.columns if c not in field_columns]

    def validate(self, frame: pd.DataFrame) -> Tuple[pd.DataFrame, List[str]]:
        """
        Check a source frame against the schema.

        Returns:
            The canonical frame (fields renamed, codes decoded) and the
            ordered biomarker column names.
        """
        source = self.source_columns()
        missing = [col for col in source.values() if col not in frame.columns]
        if missing:
            raise SchemaMismatchError(f"Missing required columns: {missing}", column=missing[0])

        biomarkers = self.biomarker_columns(frame)
        reserved = set(RECORD_FIELDS) | set(DERIVED_FIELDS) | set(source.values())
        clashes = [c for c in biomarkers if c in reserved]
        if clashes:
            raise SchemaMismatchError(
                f"Biomarker columns clash with record or derived fields: {clashes}", column=clashes[0]
            )

        canonical = frame[list(source.values()) + biomarkers].rename(
            columns={src: field for field, src in source.items()}
        )

        for field in TIMESTAMP_FIELDS:
            if not ptypes.is_datetime64_any_dtype(canonical[field]):
                raise SchemaMismatchError(
                    f"Expected a timestamp column, got dtype {canonical[field].dtype}", column=source[field]
                )

        if not _is_numeric(canonical[AGE]):
            raise SchemaMismatchError(f"Expected a numeric column, got dtype {canonical[AGE].dtype}",
                                      column=source[AGE])

        for col in biomarkers:
            if not _is_numeric(canonical[col]):
                raise SchemaMismatchError(f"Biomarker column is not numeric (dtype {canonical[col].dtype})",
                                          column=col)
            canonical[col] = canonical[col].astype(float)

        canonical[GENDER] = self._decode(canonical[GENDER], self.config.gender_codes, source[GENDER])
        canonical[OUTCOME] = self._decode(canonical[OUTCOME], self.config.outcome_codes, source[OUTCOME])
        return canonical, biomarkers

    @staticmethod
    def _decode(series: pd.Series, codes: Dict[int, str], column: str) -> pd.Series:
        labels = set(codes.values())

        def decode(value):
            if pd.isna(value):
                return None
            if value in labels:
                return value
            if value in codes:
                return codes[value]
            raise SchemaMismatchError(f"Unrecognized code {value!r}", column=column)

        return series.map(decode).astype(object)


def _is_numeric(series: pd.Series) -> bool:
    return ptypes.is_numeric_dtype(series) and not ptypes.is_bool_dtype(series)


@dataclass(frozen=True, eq=False)
class RecordStore:
    """In-memory table of test rows in canonical form. Never mutated in place."""

    frame: pd.DataFrame
    biomarkers: Tuple[str, ...]

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, schema: Optional[RecordSchema] = None) -> "RecordStore":
        """Validate a source frame and wrap it; row order is preserved."""
        schema = schema or RecordSchema()
        canonical, biomarkers = schema.validate(frame)
        return cls(frame=canonical.reset_index(drop=True), biomarkers=tuple(biomarkers))

    def with_frame(self, frame: pd.DataFrame) -> "RecordStore":
        return replace(self, frame=frame)

    @property
    def n_records(self) -> int:
        return len(self.frame)

    @property
    def n_patients(self) -> int:
        return int(self.frame[PATIENT_ID].nunique())


def load_data(data_path: Union[str, Path], schema: Optional[RecordSchema] = None) -> pd.DataFrame:
    """
    Read a CSV or Parquet export and normalize it for schema validation.

    Only the timestamp columns the schema declares are parsed as dates.
    """
    schema = schema or RecordSchema()
    start_time = time.time()
    p = Path(data_path)
    logger.info(f"Loading data from {p}")

    if p.suffix.lower() == ".csv":
        df = pd.read_csv(p)
    elif p.suffix.lower() in (".parquet", ".pq"):
        df = pd.read_parquet(p)
    else:
        raise ValueError(f"Unsupported file type: {p.suffix}")

    df.columns = normalize_column_names(df.columns)

    for col in schema.timestamp_source_columns():
        if col in df.columns and not ptypes.is_datetime64_any_dtype(df[col]):
            try:
                df[col] = pd.to_datetime(df[col], errors="raise")
            except (ValueError, TypeError) as e:
                raise SchemaMismatchError(f"Cannot parse timestamps: {e}", column=col) from e

    elapsed_time = time.time() - start_time
    logger.info(f"Loaded data shape: {df.shape} in {elapsed_time:.2f} seconds")
    return df
