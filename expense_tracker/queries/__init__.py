"""Live record queries."""

from expense_tracker.queries.feed import RecordFeed, build_snapshot

__all__ = ["RecordFeed", "build_snapshot"]
