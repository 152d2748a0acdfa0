"""
Patient-level aggregation of test rows.

Collapses each patient's rows into one demographic/outcome row
(PatientRecord) and one mean-biomarker row (BiomarkerProfile).
"""

import logging
import time
from typing import List, Optional, Sequence

import pandas as pd

from ..exceptions import DataIntegrityError, InconsistentPatientDataError
from .records import (
    ADMISSION_TIME, AGE, AGE_GROUP, DEMOGRAPHIC_FIELDS, DISCHARGE_TIME, LENGTH_OF_STAY, OUTCOME,
    PATIENT_ID, RecordStore,
)

logger = logging.getLogger(__name__)

AGE_GROUPS = ('young_adult', 'adult', 'elderly')


def assign_age_groups(ages: pd.Series) -> pd.Series:
    """Bucket ages: <=30 young_adult, 31-64 adult, >=65 elderly; null stays null."""
    groups = pd.Series(None, index=ages.index, dtype=object)
    groups[ages <= 30] = 'young_adult'
    groups[(ages > 30) & (ages < 65)] = 'adult'
    groups[ages >= 65] = 'elderly'
    return pd.Series(pd.Categorical(groups, categories=AGE_GROUPS, ordered=True),
                     index=ages.index, name=AGE_GROUP)


class PatientAggregator:
    """Reduce test rows to one row per patient, refusing conflicting rows."""

    def __init__(self, demographic_fields: Sequence[str] = DEMOGRAPHIC_FIELDS):
        self.demographic_fields = list(demographic_fields)

    def check_consistency(self, frame: pd.DataFrame) -> None:
        """
        Raise InconsistentPatientDataError if any patient has more than one
        distinct non-null value in a demographic/outcome field.
        """
        counts = frame.groupby(PATIENT_ID, sort=True)[self.demographic_fields].nunique(dropna=True)
        for field in self.demographic_fields:
            offenders = counts.index[counts[field] > 1]
            if len(offenders):
                raise InconsistentPatientDataError(
                    f"{len(offenders)} patient(s) have conflicting values; "
                    f"first has {int(counts.loc[offenders[0], field])} distinct values",
                    patient_id=offenders[0], column=field,
                )

    def patient_records(self, store: RecordStore) -> pd.DataFrame:
        """One PatientRecord row per patient_id, indexed by patient_id."""
        start_time = time.time()
        frame = store.frame
        self.check_consistency(frame)

        patients = frame.groupby(PATIENT_ID, sort=True)[self.demographic_fields].first()

        inverted = patients[DISCHARGE_TIME] < patients[ADMISSION_TIME]
        if inverted.any():
            raise DataIntegrityError("Discharge time precedes admission time",
                                     patient_id=patients.index[inverted.to_numpy()][0],
                                     column=DISCHARGE_TIME)

        patients[AGE_GROUP] = assign_age_groups(patients[AGE])
        # kept fractional; rounding is a presentation concern
        patients[LENGTH_OF_STAY] = (patients[DISCHARGE_TIME] - patients[ADMISSION_TIME]) / pd.Timedelta(days=1)

        elapsed_time = time.time() - start_time
        logger.info(f"Aggregated {len(frame)} rows into {len(patients)} patient records "
                    f"in {elapsed_time:.2f} seconds")
        return patients

    def biomarker_profiles(self,
                           store: RecordStore,
                           biomarkers: Optional[List[str]] = None,
                           patients: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """
        Mean of each patient's non-null measurements per biomarker.

        Args:
            store: Imputed test rows
            biomarkers: Columns to aggregate; all of the store's biomarkers
                when omitted
            patients: Precomputed patient_records() output, to avoid
                aggregating twice

        Returns:
            One row per patient_id with age, age_group, outcome and one column
            per biomarker. A biomarker with no measurement stays null.
        """
        columns = list(biomarkers) if biomarkers is not None else list(store.biomarkers)
        if patients is None:
            patients = self.patient_records(store)

        profiles = patients[[AGE, AGE_GROUP, OUTCOME]].copy()
        if columns:
            means = store.frame.groupby(PATIENT_ID, sort=True)[columns].mean()
            profiles = profiles.join(means)

        n_unmeasured = int(profiles[columns].isna().sum().sum()) if columns else 0
        logger.info(f"Built biomarker profiles for {len(profiles)} patients x {len(columns)} biomarkers "
                    f"({n_unmeasured} never-measured values)")
        return profiles
