"""
Record <-> document conversion.

Documents use the camelCase keys of the original collection so that records
written by earlier versions of the app stay readable. Amounts are stored as
exact decimal strings and dates as ISO strings. Numeric amounts from older
documents are still accepted on read.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from expense_tracker.models.record import Record, RecordPayload


DISPLAY_ID_KEY = "displayId"

# Python field name -> document key
RECORD_DOCUMENT_KEYS = {
    "group_name": "groupName",
    "record_date": "date",
    "bank_type": "bankType",
    "township": "township",
    "bank_account_number": "bankAccountNumber",
    "nrc_number": "nrcNumber",
    "name": "name",
    "phone_number": "phoneNumber",
    "category": "category",
    "other_category": "otherCategory",
    "collected_amount": "collectedAmount",
    "service_fee": "serviceFee",
    "total_amount": "totalAmount",
    "buying_rate": "buyingRate",
    "converted_amount": "convertedAmount",
    "transfer_fee": "transferFee",
    "total_transfer_amount": "totalTransferAmount",
    "remark": "remark",
    "uploaded_files": "uploadedFiles",
}

_DECIMAL_FIELDS = {
    "collected_amount",
    "service_fee",
    "total_amount",
    "buying_rate",
    "converted_amount",
    "transfer_fee",
    "total_transfer_amount",
}


def _to_document_value(field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if field_name in _DECIMAL_FIELDS:
        return str(value)
    if field_name == "record_date":
        return value.isoformat()
    if field_name == "uploaded_files":
        return [attachment.model_dump() for attachment in value]
    return value


def payload_to_document(payload: RecordPayload) -> dict[str, Any]:
    """Convert a payload to document fields (without the display id)."""
    return {
        key: _to_document_value(field_name, getattr(payload, field_name))
        for field_name, key in RECORD_DOCUMENT_KEYS.items()
    }


def record_to_document(payload: RecordPayload, display_id: int) -> dict[str, Any]:
    """Convert a payload plus its assigned display id to a document."""
    document = payload_to_document(payload)
    document[DISPLAY_ID_KEY] = display_id
    return document


def _parse_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        # Tolerate full ISO timestamps written by the JavaScript client
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value


def _parse_decimal(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        # Left for the schema to reject
        return value


def document_to_record(doc_id: str, data: Mapping[str, Any]) -> Record:
    """
    Convert a stored document back to a Record.

    Raises:
        pydantic.ValidationError: If the document does not satisfy the
            record schema (including the derived-amount rules).
    """
    fields: dict[str, Any] = {"id": doc_id, "display_id": data.get(DISPLAY_ID_KEY)}
    for field_name, key in RECORD_DOCUMENT_KEYS.items():
        if key not in data:
            continue
        value = data[key]
        if field_name in _DECIMAL_FIELDS:
            value = _parse_decimal(value)
        elif field_name == "record_date":
            value = _parse_date(value)
        elif field_name == "uploaded_files" and value is None:
            value = []
        fields[field_name] = value
    return Record.model_validate(fields)
