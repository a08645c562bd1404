"""
Core Data Models for Expense Tracker

These models define the one schema every record goes through, whether it was
typed into the form, proposed by the receipt scanner, or read back from the
document store.

DESIGN DECISION: Derived monetary fields are enforced at write time.
A payload may omit them (they are computed) but it may not contradict them:
    total_amount          = collected_amount + service_fee
    converted_amount      = collected_amount * buying_rate
    total_transfer_amount = converted_amount + transfer_fee
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, NamedTuple, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MONEY_QUANTUM = Decimal("0.01")
RATE_QUANTUM = Decimal("0.000001")

# Category value whose label comes from the free-text override
OTHER_CATEGORY = "Other"

INPUT_AMOUNT_FIELDS = (
    "collected_amount",
    "service_fee",
    "buying_rate",
    "transfer_fee",
)

DERIVED_AMOUNT_FIELDS = (
    "total_amount",
    "converted_amount",
    "total_transfer_amount",
)


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary value to cents."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    """Round a conversion rate to six decimal places."""
    return value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """
    Leniently convert a form or document value to Decimal.

    Blank, missing and unparseable values count as zero, the same way the
    form treats an empty number input.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    try:
        result = Decimal(str(value).strip() or "0")
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


class DerivedAmounts(NamedTuple):
    """The three computed monetary fields of a record."""
    total_amount: Decimal
    converted_amount: Decimal
    total_transfer_amount: Decimal


def compute_derived_amounts(
    collected_amount: Any,
    service_fee: Any = None,
    buying_rate: Any = None,
    transfer_fee: Any = None,
) -> DerivedAmounts:
    """
    Compute the derived monetary fields from their inputs.

    >>> compute_derived_amounts(100, 10, 3, 5)
    DerivedAmounts(total_amount=Decimal('110.00'), converted_amount=Decimal('300.00'), total_transfer_amount=Decimal('305.00'))
    """
    collected = to_decimal(collected_amount)
    converted = quantize_money(collected * quantize_rate(to_decimal(buying_rate)))
    return DerivedAmounts(
        total_amount=quantize_money(collected + to_decimal(service_fee)),
        converted_amount=converted,
        total_transfer_amount=quantize_money(converted + to_decimal(transfer_fee)),
    )


def resolve_category_label(category: Optional[str], override: Optional[str]) -> Optional[str]:
    """
    Resolve the display label of a category with an "Other" variant.

    The free-text override wins only when the category is "Other" and the
    override is non-empty.
    """
    if category == OTHER_CATEGORY and override and override.strip():
        return override.strip()
    return category


# =============================================================================
# ATTACHMENTS
# =============================================================================

class ImageAttachment(BaseModel):
    """
    A receipt image stored inline on the record.

    The url is a self-contained data URI (data:<mime>;base64,<bytes>) that
    can be used directly as an image source.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Original file name"
    )
    url: str = Field(
        ...,
        pattern=r"^data:image/[\w.+-]+;base64,",
        description="Inline data URI of the image"
    )


# =============================================================================
# RECORD MODELS
# =============================================================================

class RecordPayload(BaseModel):
    """
    A transaction record before it has been given a display id.

    This is the shared schema used for manual entry, for re-validating
    scanned receipt values, and for every write to the store.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Who and where
    group_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Group the transaction belongs to"
    )
    record_date: date = Field(
        ...,
        description="Transaction date"
    )
    bank_type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Bank / institution"
    )
    township: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Branch township"
    )
    bank_account_number: Optional[str] = Field(
        default=None,
        max_length=50,
    )
    nrc_number: Optional[str] = Field(
        default=None,
        max_length=50,
        description="National registration card number"
    )
    name: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    phone_number: Optional[str] = Field(
        default=None,
        max_length=30,
    )

    # Expense category with an "Other" escape hatch
    category: Optional[str] = Field(
        default=None,
        max_length=100,
    )
    other_category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Free-text label used when category is Other"
    )

    # Amounts
    collected_amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount collected from the customer"
    )
    service_fee: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
    )
    total_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="collected_amount + service_fee"
    )
    buying_rate: Decimal = Field(
        ...,
        ge=0,
        description="Conversion rate into the transfer currency"
    )
    converted_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="collected_amount * buying_rate"
    )
    transfer_fee: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
        description="Fee in the transfer currency"
    )
    total_transfer_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="converted_amount + transfer_fee"
    )

    remark: str = Field(
        default="",
        max_length=1000,
    )
    uploaded_files: list[ImageAttachment] = Field(default_factory=list)

    @field_validator(
        'collected_amount',
        'service_fee',
        'total_amount',
        'converted_amount',
        'transfer_fee',
        'total_transfer_amount',
    )
    @classmethod
    def round_to_cents(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is None:
            return v
        return quantize_money(v)

    @field_validator('buying_rate')
    @classmethod
    def round_rate(cls, v: Decimal) -> Decimal:
        return quantize_rate(v)

    @field_validator(
        'township',
        'bank_account_number',
        'nrc_number',
        'name',
        'phone_number',
        'category',
        'other_category',
        mode='before',
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Empty optional text inputs are stored as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('remark', mode='before')
    @classmethod
    def none_remark_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @model_validator(mode='after')
    def enforce_derived_amounts(self) -> 'RecordPayload':
        """Fill missing derived amounts and reject inconsistent ones."""
        expected = compute_derived_amounts(
            self.collected_amount,
            self.service_fee,
            self.buying_rate,
            self.transfer_fee,
        )
        formulas = {
            "total_amount": "collected_amount + service_fee",
            "converted_amount": "collected_amount * buying_rate",
            "total_transfer_amount": "converted_amount + transfer_fee",
        }
        for field_name in DERIVED_AMOUNT_FIELDS:
            value = getattr(self, field_name)
            computed = getattr(expected, field_name)
            if value is None:
                setattr(self, field_name, computed)
            elif value != computed:
                raise ValueError(
                    f"{field_name} must equal {formulas[field_name]} "
                    f"({computed}), got {value}"
                )
        return self

    @property
    def category_label(self) -> Optional[str]:
        """Category with the "Other" override applied."""
        return resolve_category_label(self.category, self.other_category)


class Record(RecordPayload):
    """
    A persisted record.

    `id` is the store's opaque document identity; `display_id` is the
    sequential number shown to users.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Document id assigned by the store"
    )
    display_id: int = Field(
        ...,
        ge=1,
        description="Sequential display id assigned by the allocator"
    )

    def payload(self) -> RecordPayload:
        """Return the record without its identity fields."""
        return RecordPayload.model_validate(
            self.model_dump(exclude={"id", "display_id"})
        )


class RecordSnapshot(BaseModel):
    """
    An immutable, point-in-time copy of the whole record collection.

    Records are ordered ascending by display id.
    """
    model_config = ConfigDict(frozen=True)

    records: tuple[Record, ...] = ()
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def last_display_id(self) -> int:
        """Highest display id in the snapshot, 0 when empty."""
        return max((r.display_id for r in self.records), default=0)
