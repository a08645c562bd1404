"""
Record Form

Holds the state of the entry form between user interactions.

DESIGN DECISION: The form never decides on its own what is valid.
Manual input and values proposed by the receipt scanner both go through
RecordPayload, the same schema used for every write. A scanned value is
merged only if that schema accepts it for its field.

Derived amounts are recomputed whenever one of their inputs changes and
cannot be set directly.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, NamedTuple, Optional

from pydantic import TypeAdapter, ValidationError

from expense_tracker.models.record import (
    DERIVED_AMOUNT_FIELDS,
    INPUT_AMOUNT_FIELDS,
    DerivedAmounts,
    ImageAttachment,
    Record,
    RecordPayload,
    compute_derived_amounts,
    resolve_category_label,
)


# Field -> label shown on the form and in the review step
FIELD_LABELS = {
    "group_name": "Group",
    "record_date": "Date",
    "bank_type": "Bank",
    "township": "Township",
    "bank_account_number": "Bank Account No.",
    "nrc_number": "NRC No.",
    "name": "Name",
    "phone_number": "Phone",
    "category": "Category",
    "other_category": "Other Category",
    "collected_amount": "Collected Amount",
    "service_fee": "Service Fee",
    "total_amount": "Total Amount",
    "buying_rate": "Buying Rate",
    "converted_amount": "Converted Amount",
    "transfer_fee": "Transfer Fee",
    "total_transfer_amount": "Total Transfer Amount",
    "remark": "Remark",
}

# Fields the receipt scanner is asked to fill
SCANNABLE_FIELDS = tuple(
    name for name in FIELD_LABELS if name not in DERIVED_AMOUNT_FIELDS
)

EDITABLE_FIELDS = SCANNABLE_FIELDS

# Error key for failures that don't belong to a single field
FORM_ERROR_KEY = "__form__"

_date_adapter = TypeAdapter(date)
_decimal_adapter = TypeAdapter(Decimal)


class FormValidationError(Exception):
    """The form content does not satisfy the record schema."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = field_errors
        fields = ", ".join(FIELD_LABELS.get(f, f) for f in field_errors)
        super().__init__(f"Please fix: {fields}")


class ExtractionMerge(NamedTuple):
    """Outcome of merging scanned values into the form."""
    accepted: dict[str, Any]
    rejected: dict[str, str]
    ignored: list[str]


def field_errors_from(error: ValidationError) -> dict[str, str]:
    """Flatten a pydantic ValidationError to one message per top-level field."""
    errors: dict[str, str] = {}
    for item in error.errors():
        key = str(item["loc"][0]) if item["loc"] else FORM_ERROR_KEY
        errors.setdefault(key, item["msg"])
    return errors


def _normalize(field: str, value: Any) -> Any:
    """Parse an already-accepted value the same way the schema does."""
    if field == "record_date":
        return _date_adapter.validate_python(value)
    if field in INPUT_AMOUNT_FIELDS:
        return _decimal_adapter.validate_python(value)
    return str(value).strip()


def _default_values() -> dict[str, Any]:
    values: dict[str, Any] = {name: None for name in EDITABLE_FIELDS}
    values.update(
        record_date=date.today(),
        service_fee=Decimal("0"),
        transfer_fee=Decimal("0"),
        remark="",
    )
    return values


class RecordForm:
    """
    Entry form state: field values, attachments and derived amounts.

    Args:
        collected_currency: Label of the collected amount's currency
        transfer_currency: Label of the converted amount's currency
    """

    def __init__(self, collected_currency: str = "RM", transfer_currency: str = "MMK"):
        self.collected_currency = collected_currency
        self.transfer_currency = transfer_currency
        self._values = _default_values()
        self._attachments: list[ImageAttachment] = []
        self._derived = compute_derived_amounts(None)
        self.editing: Optional[Record] = None

    @classmethod
    def from_record(cls, record: Record, **kwargs) -> "RecordForm":
        """A form pre-filled with an existing record, for editing."""
        form = cls(**kwargs)
        for name in EDITABLE_FIELDS:
            form._values[name] = getattr(record, name)
        form._attachments = list(record.uploaded_files)
        form._recompute()
        form.editing = record
        return form

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    @property
    def values(self) -> dict[str, Any]:
        """Current inputs plus derived amounts."""
        return {**self._values, **self._derived._asdict()}

    @property
    def derived(self) -> DerivedAmounts:
        return self._derived

    @property
    def attachments(self) -> list[ImageAttachment]:
        return list(self._attachments)

    def get(self, field: str) -> Any:
        return self.values[field]

    def set_value(self, field: str, value: Any) -> None:
        """
        Set one input field.

        Raises:
            ValueError: For derived fields, which are always computed
            KeyError: For unknown fields
        """
        if field in DERIVED_AMOUNT_FIELDS:
            raise ValueError(f"{field} is computed and cannot be set")
        if field not in self._values:
            raise KeyError(field)
        self._values[field] = value
        if field in INPUT_AMOUNT_FIELDS:
            self._recompute()

    def _recompute(self) -> None:
        self._derived = compute_derived_amounts(
            self._values["collected_amount"],
            self._values["service_fee"],
            self._values["buying_rate"],
            self._values["transfer_fee"],
        )

    def reset(self) -> None:
        """Back to an empty form."""
        self._values = _default_values()
        self._attachments = []
        self._recompute()
        self.editing = None

    # -------------------------------------------------------------------------
    # Attachments
    # -------------------------------------------------------------------------

    def add_attachment(self, attachment: ImageAttachment) -> None:
        self._attachments.append(attachment)

    def remove_attachment(self, index: int) -> ImageAttachment:
        """
        Remove the attachment at `index`.

        Raises:
            IndexError: If there is no such attachment
        """
        return self._attachments.pop(index)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _candidate(self) -> dict[str, Any]:
        return {**self._values, "uploaded_files": list(self._attachments)}

    def validate(self) -> RecordPayload:
        """
        Validate the form through the shared record schema.

        Raises:
            FormValidationError: With one message per failing field
        """
        try:
            return RecordPayload.model_validate(self._candidate())
        except ValidationError as e:
            raise FormValidationError(field_errors_from(e)) from e

    def apply_extraction(self, extracted: Mapping[str, Any]) -> ExtractionMerge:
        """
        Merge values proposed by the receipt scanner.

        Nulls and blanks are skipped, derived and unknown fields are ignored,
        and every remaining value must pass the record schema for its field.
        Only accepted values change the form.
        """
        ignored = [k for k in extracted if k not in SCANNABLE_FIELDS]
        proposed = {
            k: v for k, v in extracted.items()
            if k in SCANNABLE_FIELDS
            and v is not None
            and not (isinstance(v, str) and not v.strip())
        }
        if not proposed:
            return ExtractionMerge(accepted={}, rejected={}, ignored=ignored)

        rejected: dict[str, str] = {}
        try:
            RecordPayload.model_validate({**self._candidate(), **proposed})
        except ValidationError as e:
            rejected = {
                field: message
                for field, message in field_errors_from(e).items()
                if field in proposed
            }

        accepted: dict[str, Any] = {}
        for field, value in proposed.items():
            if field in rejected:
                continue
            try:
                accepted[field] = _normalize(field, value)
            except ValidationError as e:
                rejected[field] = field_errors_from(e).get(FORM_ERROR_KEY, str(e))

        for field, value in accepted.items():
            self.set_value(field, value)

        return ExtractionMerge(accepted=accepted, rejected=rejected, ignored=ignored)

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    def _format(self, field: str, value: Any) -> str:
        if value is None or value == "":
            return "-"
        if field in ("collected_amount", "service_fee", "total_amount"):
            return f"{self.collected_currency} {Decimal(value):,.2f}"
        if field in ("converted_amount", "transfer_fee", "total_transfer_amount"):
            return f"{self.transfer_currency} {Decimal(value):,.2f}"
        if isinstance(value, date):
            return value.strftime("%d %B %Y")
        return str(value)

    def review_lines(self) -> list[tuple[str, str]]:
        """Label/value pairs shown for confirmation before submitting."""
        values = self.values
        lines = []
        for field, label in FIELD_LABELS.items():
            if field == "other_category":
                continue
            value = values[field]
            if field == "category":
                value = resolve_category_label(value, values["other_category"])
            try:
                lines.append((label, self._format(field, value)))
            except (ArithmeticError, ValueError, TypeError):
                lines.append((label, str(value)))
        lines.append(("Attachments", str(len(self._attachments))))
        return lines
