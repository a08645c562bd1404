"""Chart and summary models produced by the aggregation engine."""

from decimal import Decimal

from pydantic import BaseModel, Field

from expense_tracker.models.record import Record


class ChartDatum(BaseModel):
    """One bar / pie slice: a category name and its accumulated total."""

    name: str
    total: Decimal = Decimal("0")

    def as_tuple(self) -> tuple[str, Decimal]:
        return self.name, self.total


class DashboardSummary(BaseModel):
    """
    Everything the dashboard renders, computed from one snapshot.

    Totals and averages treat missing amounts as zero; averages are zero
    for an empty collection.
    """

    transaction_count: int = Field(default=0, ge=0)

    total_collected: Decimal = Decimal("0")
    total_service_fees: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    total_converted: Decimal = Decimal("0")
    total_transfer_fees: Decimal = Decimal("0")
    total_transfer_amount: Decimal = Decimal("0")

    average_collected: Decimal = Decimal("0")
    average_total_amount: Decimal = Decimal("0")
    average_transfer_amount: Decimal = Decimal("0")

    by_bank: list[ChartDatum] = Field(default_factory=list)
    by_group: list[ChartDatum] = Field(default_factory=list)
    by_township: list[ChartDatum] = Field(default_factory=list)
    by_category: list[ChartDatum] = Field(default_factory=list)

    recent: list[Record] = Field(
        default_factory=list,
        description="Most recent records, newest first"
    )

    @property
    def is_empty(self) -> bool:
        return self.transaction_count == 0
