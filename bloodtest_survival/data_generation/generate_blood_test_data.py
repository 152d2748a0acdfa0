"""
Synthetic Blood-Test Data Generator

Generates raw hospital blood-test exports in the layout the pipeline ingests:
one row per test, patient identifier written only on the first row of each
patient's block, coded gender/outcome, and patchy biomarker measurements.

Some biomarkers separate survivors from non-survivors strongly, one pair is
strongly inter-correlated, and the rest are weak or pure noise, so the
feature selector has something real to find.
"""

import argparse
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import yaml

logger = logging.getLogger(__name__)

# name -> (survivor mean, non-survivor mean, within-group sd)
BIOMARKER_CATALOGUE: Dict[str, Tuple[float, float, float]] = {
    'Lactate dehydrogenase': (250.0, 650.0, 90.0),
    '(%)lymphocyte': (25.0, 6.0, 5.0),
    'High sensitivity C-reactive protein': (20.0, 110.0, 30.0),
    'Hypersensitive cardiac troponinI': (5.0, 60.0, 40.0),
    'albumin': (38.0, 30.0, 4.0),
    'Platelet count': (220.0, 150.0, 60.0),
    'hemoglobin': (130.0, 124.0, 15.0),
    'Serum chloride': (102.0, 102.0, 3.0),
}
# derived from the lymphocyte share, so the two move together
NEUTROPHILS = 'neutrophils(%)'
LYMPHOCYTES = '(%)lymphocyte'

RAW_PATIENT_ID = 'PATIENT_ID'
RAW_OBSERVED_AT = 'RE_DATE'
RAW_ADMISSION = 'Admission time'
RAW_DISCHARGE = 'Discharge time'

GENDER_CODES = {'male': 1, 'female': 2}
OUTCOME_CODES = {'survived': 0, 'died': 1}


class BloodTestDataGenerator:
    """Generate synthetic per-test blood records for survival analysis."""

    def __init__(self,
                 seed: int = 42,
                 missing_rate: float = 0.2,
                 never_measured_rate: float = 0.03,
                 sparse_ids: bool = True,
                 tests_per_patient: Tuple[int, int] = (2, 7)):
        """
        Args:
            seed: Random seed; the same seed always yields the same dataset
            missing_rate: Chance that a single biomarker cell is left blank
            never_measured_rate: Chance that a patient never has a biomarker
                measured at all
            sparse_ids: Write PATIENT_ID only on each patient's first row
            tests_per_patient: Inclusive range of test rows per patient
        """
        if not 0.0 <= missing_rate < 1.0:
            raise ValueError("missing_rate must be in [0, 1)")
        if not 0.0 <= never_measured_rate < 1.0:
            raise ValueError("never_measured_rate must be in [0, 1)")
        self.seed = seed
        self.missing_rate = missing_rate
        self.never_measured_rate = never_measured_rate
        self.sparse_ids = sparse_ids
        self.tests_per_patient = tests_per_patient

    @property
    def biomarker_names(self):
        return list(BIOMARKER_CATALOGUE) + [NEUTROPHILS]

    def generate_patients(self, n_patients: int, mortality: float,
                          rng: np.random.Generator) -> pd.DataFrame:
        """One row per patient with demographics, stay and outcome."""
        n_died = int(round(n_patients * mortality))
        died = np.zeros(n_patients, dtype=bool)
        died[rng.permutation(n_patients)[:n_died]] = True

        age = np.where(died, rng.normal(70, 10, n_patients), rng.normal(50, 15, n_patients))
        admission = pd.Timestamp('2020-01-10') + pd.to_timedelta(rng.uniform(0, 40, n_patients), unit='D')
        # non-survivors tend to have shorter stays
        stay_days = np.where(died, rng.uniform(2, 15, n_patients), rng.uniform(8, 25, n_patients))

        patients = pd.DataFrame({
            RAW_PATIENT_ID: np.arange(1, n_patients + 1),
            'age': np.clip(np.round(age), 18, 95).astype(int),
            'gender': rng.choice([GENDER_CODES['male'], GENDER_CODES['female']], size=n_patients),
            RAW_ADMISSION: admission.round('min'),
            RAW_DISCHARGE: (admission + pd.to_timedelta(stay_days, unit='D')).round('min'),
            'outcome': np.where(died, OUTCOME_CODES['died'], OUTCOME_CODES['survived']),
        })
        logger.info(f"Generated {n_patients} patients, {n_died} non-survivors")
        return patients

    def generate_test_rows(self, patients: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
        """Expand patients into chronologically ordered test rows."""
        low, high = self.tests_per_patient
        n_tests = rng.integers(low, high + 1, size=len(patients))
        rows = patients.loc[patients.index.repeat(n_tests)].reset_index(drop=True)

        # observation times spread across each stay, chronological per patient
        fraction = rng.uniform(0, 1, len(rows))
        rows['_order'] = fraction
        rows = rows.sort_values([RAW_PATIENT_ID, '_order'], kind='mergesort').reset_index(drop=True)
        stay = rows[RAW_DISCHARGE] - rows[RAW_ADMISSION]
        rows[RAW_OBSERVED_AT] = (rows[RAW_ADMISSION] + stay * rows.pop('_order')).dt.round('min')

        died = (rows['outcome'] == OUTCOME_CODES['died']).to_numpy()
        for name, (mean_survived, mean_died, sd) in BIOMARKER_CATALOGUE.items():
            means = np.where(died, mean_died, mean_survived)
            rows[name] = np.clip(rng.normal(means, sd), 0, None).round(2)
        monocytes = np.clip(rng.normal(7, 2, len(rows)), 0, None)
        rows[NEUTROPHILS] = np.clip(100 - rows[LYMPHOCYTES] - monocytes, 0, 100).round(2)

        rows = self._apply_missingness(rows, rng)
        if self.sparse_ids:
            first_row = ~rows[RAW_PATIENT_ID].duplicated()
            rows[RAW_PATIENT_ID] = rows[RAW_PATIENT_ID].where(first_row)

        columns = [RAW_PATIENT_ID, RAW_OBSERVED_AT, 'age', 'gender', RAW_ADMISSION, RAW_DISCHARGE, 'outcome']
        return rows[columns + self.biomarker_names]

    def _apply_missingness(self, rows: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
        names = self.biomarker_names
        blank = rng.uniform(0, 1, (len(rows), len(names))) < self.missing_rate

        patient_ids = rows[RAW_PATIENT_ID].unique()
        never = rng.uniform(0, 1, (len(patient_ids), len(names))) < self.never_measured_rate
        never_by_row = pd.DataFrame(never, index=patient_ids).loc[rows[RAW_PATIENT_ID]].to_numpy()

        values = rows[names].to_numpy(dtype=float)
        values[blank | never_by_row] = np.nan
        rows[names] = values
        logger.info(f"Blanked {int(np.isnan(values).sum())} of {values.size} biomarker cells")
        return rows

    def generate_dataset(self, n_patients: int = 375, mortality: float = 0.464) -> pd.DataFrame:
        """Generate the full raw export."""
        if n_patients < 1:
            raise ValueError("n_patients must be positive")
        if not 0.0 <= mortality <= 1.0:
            raise ValueError("mortality must be in [0, 1]")

        rng = np.random.default_rng(self.seed)
        patients = self.generate_patients(n_patients, mortality, rng)
        rows = self.generate_test_rows(patients, rng)
        logger.info(f"Generated {len(rows)} test rows for {n_patients} patients")
        return rows


def main(argv: Optional[list] = None):
    """Main function for command-line usage."""
    parser = argparse.ArgumentParser(description="Generate synthetic blood-test records")
    parser.add_argument("--num_patients", type=int, default=375,
                        help="Number of patients to generate")
    parser.add_argument("--mortality", type=float, default=0.464,
                        help="Share of patients who die")
    parser.add_argument("--missing_rate", type=float, default=0.2,
                        help="Chance a single biomarker value is blank")
    parser.add_argument("--never_measured_rate", type=float, default=0.03,
                        help="Chance a patient never has a given biomarker measured")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--format", choices=["csv", "parquet"], default="csv",
                        help="Output file format")
    parser.add_argument("--output_dir", type=str, default="./data/raw",
                        help="Output directory for generated data")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    generator = BloodTestDataGenerator(seed=args.seed, missing_rate=args.missing_rate,
                                       never_measured_rate=args.never_measured_rate)
    df = generator.generate_dataset(n_patients=args.num_patients, mortality=args.mortality)

    output_path = output_dir / f"blood_tests.{args.format}"
    if args.format == "csv":
        df.to_csv(output_path, index=False)
    else:
        df.to_parquet(output_path, index=False, engine='pyarrow')
    logger.info(f"Data saved to {output_path}")

    outcomes = df.groupby(df[RAW_PATIENT_ID].ffill())['outcome'].first()
    summary = {
        'total_records': len(df),
        'unique_patients': int(outcomes.size),
        'non_survivors': int((outcomes == OUTCOME_CODES['died']).sum()),
        'biomarkers': generator.biomarker_names,
        'missing_values': {k: int(v) for k, v in df.isnull().sum().items()},
        'data_generation_config': {
            'seed': generator.seed,
            'missing_rate': generator.missing_rate,
            'never_measured_rate': generator.never_measured_rate,
            'sparse_ids': generator.sparse_ids,
        },
    }
    summary_path = output_dir / "data_summary.yaml"
    with open(summary_path, 'w') as f:
        yaml.dump(summary, f, default_flow_style=False)

    logger.info(f"Summary saved to {summary_path}")


if __name__ == "__main__":
    main()
