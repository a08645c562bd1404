"""AI agents package."""

from expense_tracker.agents.scan_agent import (
    ExtractionFailure,
    ReceiptScanAgent,
    describe_fields,
    parse_reply,
)

__all__ = [
    "ExtractionFailure",
    "ReceiptScanAgent",
    "describe_fields",
    "parse_reply",
]
