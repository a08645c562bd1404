"""Image services package."""

from expense_tracker.services.image.encoding import (
    ImageRejectedError,
    decode_data_uri,
    encode_image,
    encode_upload,
)

__all__ = [
    "ImageRejectedError",
    "decode_data_uri",
    "encode_image",
    "encode_upload",
]
