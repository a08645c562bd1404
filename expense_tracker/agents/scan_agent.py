"""
Receipt Scan Agent

DESIGN DECISION: The model is a READER, not a WRITER.
It looks at a receipt image and proposes values for form fields. It never
touches the store, and nothing it returns is trusted: the form re-validates
every value through the record schema before accepting it.

CRITICAL BOUNDARIES:
- CAN: Propose values for the scannable form fields
- CANNOT: Propose derived amounts (they are always computed)
- MUST: Return null for anything it cannot read
"""

import json
from typing import Any, Optional

import google.generativeai as genai
import structlog

from expense_tracker.config import GeminiSettings, get_settings
from expense_tracker.forms.record_form import FIELD_LABELS, SCANNABLE_FIELDS
from expense_tracker.models.record import ImageAttachment, RecordPayload
from expense_tracker.services.image.encoding import decode_data_uri


logger = structlog.get_logger(__name__)


class ExtractionFailure(Exception):
    """The receipt could not be read: service error or unusable reply."""
    pass


def describe_fields() -> dict[str, str]:
    """Field name -> description sent to the model."""
    descriptions = {}
    for name in SCANNABLE_FIELDS:
        field = RecordPayload.model_fields[name]
        text = field.description or FIELD_LABELS[name]
        if name == "record_date":
            text += " (YYYY-MM-DD)"
        elif name in ("collected_amount", "service_fee", "buying_rate", "transfer_fee"):
            text += " (number only, no currency symbol)"
        descriptions[name] = text
    return descriptions


def parse_reply(text: str) -> dict[str, Any]:
    """
    Extract the first JSON object from a model reply.

    Raises:
        ExtractionFailure: If there is no JSON object in the reply
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ExtractionFailure("Reply did not contain a JSON object")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ExtractionFailure(f"Reply was not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionFailure("Reply JSON was not an object")
    return data


class ReceiptScanAgent:
    """
    Gemini-backed extraction of form values from a receipt image.

    Args:
        settings: Gemini configuration, defaults to the environment
        model: A ready GenerativeModel (or a stand-in with
            generate_content_async); skips client configuration when given
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        if model is not None:
            self._model = model
        else:
            self._settings = settings or get_settings().gemini
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    def build_prompt(self) -> str:
        fields = json.dumps(describe_fields(), indent=2)
        return f"""You are filling in a money-transfer record from a photo of a receipt or transfer slip.

Read the image and extract a value for each of these form fields:
{fields}

Rules:
- Use only what is visible in the image. Never guess.
- Use null for every field you cannot read with confidence.
- Amounts are plain numbers without currency symbols or thousands separators.
- Dates use the YYYY-MM-DD format.

Respond with ONLY a JSON object whose keys are exactly the field names above."""

    async def extract(self, attachment: ImageAttachment) -> dict[str, Any]:
        """
        Propose form values for a receipt image.

        Returns:
            Field name -> proposed value (None when unreadable). Untrusted.

        Raises:
            ExtractionFailure: Service error, blocked reply, or a reply that
                is not a JSON object
        """
        try:
            mime_type, data = decode_data_uri(attachment.url)
        except ValueError as e:
            raise ExtractionFailure(f"Attachment is not an inline image: {e}") from e

        try:
            response = await self._model.generate_content_async([
                self.build_prompt(),
                {"mime_type": mime_type, "data": data},
            ])
        except Exception as e:
            logger.warning("receipt_scan_request_failed", filename=attachment.name, error=str(e))
            raise ExtractionFailure(f"Receipt scanning service failed: {e}") from e

        try:
            text = response.text
        except ValueError as e:
            # Raised by the client when the reply was blocked or empty
            raise ExtractionFailure(f"No usable reply: {e}") from e

        extracted = parse_reply(text or "")
        logger.info(
            "receipt_scanned",
            filename=attachment.name,
            fields=sorted(k for k, v in extracted.items() if v is not None),
        )
        return extracted
