"""
Error taxonomy for the blood-test survival pipeline.

Every error here is terminal for a run: the pipeline stops and nothing is
written. Errors carry the offending patient and/or column so the caller can
locate the bad input.
"""

from typing import Any, Optional


class BiomarkerPipelineError(Exception):
    """Base class for errors that abort a pipeline run."""

    def __init__(self, message: str, patient_id: Optional[Any] = None, column: Optional[str] = None):
        self.patient_id = patient_id
        self.column = column
        context = []
        if patient_id is not None:
            context.append(f"patient_id={patient_id!r}")
        if column is not None:
            context.append(f"column={column!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class DataIntegrityError(BiomarkerPipelineError):
    """Input cannot be repaired, e.g. an identifier gap with no prior value."""


class InconsistentPatientDataError(BiomarkerPipelineError):
    """A patient's rows disagree on a demographic or outcome field."""


class InsufficientDataError(BiomarkerPipelineError):
    """A stratified split or a cross-validation fold cannot be formed."""


class SchemaMismatchError(BiomarkerPipelineError):
    """Columns or column types differ from what was declared or trained on."""
