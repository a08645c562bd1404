"""
Aggregation Engine

DESIGN DECISION: Aggregation is DETERMINISTIC and side-effect free.
The dashboard hands in one snapshot of the record collection and gets back
everything it renders. There is no cached intermediate state; every new
snapshot is summarized from scratch, which is fine at dashboard scale.

Records may be Record models or plain mappings (e.g. rows read from a
spreadsheet). Missing or unparseable amounts count as zero.
"""

from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from expense_tracker.models.dashboard import ChartDatum, DashboardSummary
from expense_tracker.models.record import (
    Record,
    quantize_money,
    resolve_category_label,
    to_decimal,
)


# Label used when a record has no value for the grouping field
DEFAULT_LABEL = "N/A"

RECENT_RECORDS = 5

KeyFunc = Callable[[Any], Any]


def _value(record: Any, field: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def total(records: Iterable[Any], field: str) -> Decimal:
    """Sum of `field` across all records."""
    return sum((to_decimal(_value(r, field)) for r in records), Decimal("0"))


def count(records: Iterable[Any]) -> int:
    if isinstance(records, Sequence):
        return len(records)
    return sum(1 for _ in records)


def average(records: Iterable[Any], field: str) -> Decimal:
    """
    Mean of `field`, rounded to cents.

    An empty collection averages to 0.
    """
    records = list(records)
    n = count(records)
    if n == 0:
        return Decimal("0")
    return quantize_money(total(records, field) / n)


def group_sum(
    records: Iterable[Any],
    key_field: Union[str, KeyFunc],
    value_field: str,
    default_label: str = DEFAULT_LABEL,
) -> list[ChartDatum]:
    """
    Sum `value_field` per distinct value of `key_field`.

    Categories appear in the order they are first seen, not sorted.
    `key_field` may be a callable taking the record, for derived labels.

    >>> rows = [{"bank": "A", "amt": 10}, {"bank": "B", "amt": 5}, {"bank": "A", "amt": 3}]
    >>> [d.as_tuple() for d in group_sum(rows, "bank", "amt")]
    [('A', Decimal('13')), ('B', Decimal('5'))]
    """
    key_of = key_field if callable(key_field) else (lambda r: _value(r, key_field))

    # dicts keep insertion order, which gives first-seen ordering
    totals: dict[str, Decimal] = {}
    for record in records:
        key = key_of(record)
        label = str(key).strip() if key is not None else ""
        if not label:
            label = default_label
        totals[label] = totals.get(label, Decimal("0")) + to_decimal(_value(record, value_field))

    return [ChartDatum(name=name, total=amount) for name, amount in totals.items()]


def category_label(record: Any) -> Optional[str]:
    """Resolved expense category of a record ("Other" + override -> override)."""
    return resolve_category_label(
        _value(record, "category"),
        _value(record, "other_category"),
    )


def most_recent(records: Iterable[Record], limit: int = RECENT_RECORDS) -> list[Record]:
    """The `limit` records with the highest display ids, newest first."""
    return sorted(records, key=lambda r: r.display_id, reverse=True)[:limit]


def summarize(
    records: Iterable[Record],
    recent_count: int = RECENT_RECORDS,
) -> DashboardSummary:
    """Compute the full dashboard summary for one snapshot."""
    records = list(records)

    return DashboardSummary(
        transaction_count=count(records),
        total_collected=total(records, "collected_amount"),
        total_service_fees=total(records, "service_fee"),
        total_amount=total(records, "total_amount"),
        total_converted=total(records, "converted_amount"),
        total_transfer_fees=total(records, "transfer_fee"),
        total_transfer_amount=total(records, "total_transfer_amount"),
        average_collected=average(records, "collected_amount"),
        average_total_amount=average(records, "total_amount"),
        average_transfer_amount=average(records, "total_transfer_amount"),
        by_bank=group_sum(records, "bank_type", "total_amount"),
        by_group=group_sum(records, "group_name", "total_amount"),
        by_township=group_sum(records, "township", "total_amount"),
        by_category=group_sum(records, category_label, "total_amount"),
        recent=most_recent(records, recent_count),
    )
