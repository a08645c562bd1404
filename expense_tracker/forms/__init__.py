"""Entry form state and validation."""

from expense_tracker.forms.record_form import (
    FIELD_LABELS,
    FORM_ERROR_KEY,
    SCANNABLE_FIELDS,
    ExtractionMerge,
    FormValidationError,
    RecordForm,
    field_errors_from,
)

__all__ = [
    "FIELD_LABELS",
    "FORM_ERROR_KEY",
    "SCANNABLE_FIELDS",
    "ExtractionMerge",
    "FormValidationError",
    "RecordForm",
    "field_errors_from",
]
