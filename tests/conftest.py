"""
Shared fixtures.

No test talks to Firestore, Gemini or Google Sheets: the in-memory store
stands in for the document store and external clients are replaced by
small fakes.
"""

from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from PIL import Image

from expense_tracker.allocation import SequentialIdAllocator
from expense_tracker.models.record import RecordPayload
from expense_tracker.services.storage import InMemoryDocumentStore, RecordRepository


def image_bytes(image_format: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


def make_payload(**overrides) -> RecordPayload:
    data = {
        "group_name": "Group A",
        "record_date": date(2024, 5, 1),
        "bank_type": "KBZ",
        "township": "Yangon",
        "name": "Aung Aung",
        "phone_number": "0912345678",
        "collected_amount": Decimal("100"),
        "service_fee": Decimal("10"),
        "buying_rate": Decimal("3"),
        "transfer_fee": Decimal("5"),
    }
    data.update(overrides)
    return RecordPayload(**data)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(max_transaction_attempts=50)


@pytest.fixture
def allocator(store) -> SequentialIdAllocator:
    return SequentialIdAllocator(store)


@pytest.fixture
def repository(store) -> RecordRepository:
    return RecordRepository(store)


@pytest.fixture
def payload() -> RecordPayload:
    return make_payload()


@pytest.fixture
def png_bytes() -> bytes:
    return image_bytes("PNG")
