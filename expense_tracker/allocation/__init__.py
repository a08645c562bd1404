"""Sequential display id allocation."""

from expense_tracker.allocation.allocator import COUNTER_FIELD, SequentialIdAllocator

__all__ = ["COUNTER_FIELD", "SequentialIdAllocator"]
