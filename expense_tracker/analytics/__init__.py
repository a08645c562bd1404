"""Pure aggregation functions for the dashboard."""

from expense_tracker.analytics.aggregation import (
    DEFAULT_LABEL,
    average,
    category_label,
    count,
    group_sum,
    most_recent,
    summarize,
    total,
)
from expense_tracker.models.record import resolve_category_label

__all__ = [
    "DEFAULT_LABEL",
    "average",
    "category_label",
    "count",
    "group_sum",
    "most_recent",
    "resolve_category_label",
    "summarize",
    "total",
]
