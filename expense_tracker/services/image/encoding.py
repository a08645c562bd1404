"""
Receipt Image Encoding

Receipt images are stored on the record itself as data URIs, so a record
is self-contained and the image can be used directly as an <img> source.
Nothing is uploaded anywhere.

The image format is identified from the bytes with PIL, never from the
file name or the browser-reported content type.
"""

import asyncio
import base64
import binascii
import re
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from expense_tracker.config import get_settings
from expense_tracker.models.record import ImageAttachment


# PIL format name -> MIME type
_FORMAT_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}

# File extensions accepted for each PIL format
_FORMAT_EXTENSIONS = {
    "PNG": {"png"},
    "JPEG": {"jpg", "jpeg"},
    "WEBP": {"webp"},
}

_DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class ImageRejectedError(Exception):
    """The uploaded file cannot be attached as a receipt image."""
    pass


def _identify_format(data: bytes) -> str:
    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ImageRejectedError(f"Not a readable image: {e}") from e
    if image_format not in _FORMAT_MIME_TYPES:
        raise ImageRejectedError(f"Unsupported image format: {image_format}")
    return image_format


def encode_image(
    filename: str,
    data: bytes,
    mime_type: Optional[str] = None,
    max_size_bytes: Optional[int] = None,
    supported_formats: Optional[list[str]] = None,
) -> ImageAttachment:
    """
    Encode an uploaded image as an inline attachment.

    Args:
        filename: Original file name (kept for display)
        data: Raw file bytes
        mime_type: Content type reported by the upload, if any. It must agree
            with the detected format when given.
        max_size_bytes: Size limit, defaults to the configured upload limit
        supported_formats: Allowed extensions, defaults to the configured list

    Raises:
        ImageRejectedError: Empty, too large, unreadable or unsupported image
    """
    app_settings = get_settings().app
    if max_size_bytes is None:
        max_size_bytes = app_settings.max_upload_size_bytes
    if supported_formats is None:
        supported_formats = app_settings.supported_formats_list

    if not data:
        raise ImageRejectedError(f"{filename} is empty")
    if len(data) > max_size_bytes:
        raise ImageRejectedError(
            f"{filename} is {len(data) / (1024 * 1024):.1f} MB, "
            f"the limit is {max_size_bytes / (1024 * 1024):.0f} MB"
        )

    image_format = _identify_format(data)
    if not _FORMAT_EXTENSIONS[image_format] & set(supported_formats):
        raise ImageRejectedError(f"{image_format} images are not accepted")

    detected_mime = _FORMAT_MIME_TYPES[image_format]
    accepted_mimes = {detected_mime}
    if image_format == "JPEG":
        accepted_mimes.add("image/jpg")
    if mime_type and mime_type.lower() not in accepted_mimes:
        raise ImageRejectedError(
            f"{filename} claims to be {mime_type} but is {detected_mime}"
        )

    encoded = base64.b64encode(data).decode("ascii")
    return ImageAttachment(name=filename, url=f"data:{detected_mime};base64,{encoded}")


async def encode_upload(
    filename: str,
    data: bytes,
    mime_type: Optional[str] = None,
) -> ImageAttachment:
    """
    Encode an upload off the event loop.

    Cancelling the awaiting task abandons the result.
    """
    return await asyncio.to_thread(encode_image, filename, data, mime_type)


def decode_data_uri(url: str) -> tuple[str, bytes]:
    """
    Split a data URI into its MIME type and raw bytes.

    Raises:
        ValueError: If the URI is not a base64 image data URI
    """
    match = _DATA_URI_PATTERN.match(url)
    if not match:
        raise ValueError("Not a base64 image data URI")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return match.group("mime"), data
