"""Helpers for data-URL encoded canvas images."""

from __future__ import annotations

import base64
import mimetypes
import re
from dataclasses import dataclass

_DATA_URL_PREFIX_RE = re.compile(r"^data:(image/[\w.+-]+);base64,")

DEFAULT_MEDIA_TYPE = "image/png"


@dataclass(frozen=True)
class ImagePayload:
    """Base64 image body plus the media type announced by its data URL."""

    data: str
    media_type: str = DEFAULT_MEDIA_TYPE

    def to_data_url(self) -> str:
        return "data:{};base64,{}".format(self.media_type, self.data)

    def to_bytes(self) -> bytes:
        """Decodes the base64 body.

        Raises:
            binascii.Error: If the body is not valid base64.
        """
        return base64.b64decode(self.data, validate=True)


def parse_image_data_url(value: str) -> ImagePayload:
    """Strips the `data:image/<fmt>;base64,` prefix from a canvas export.

    Values without the prefix are passed through unchanged as the body.

    Args:
        value: Data URL or bare base64 text.

    Returns:
        `ImagePayload` with the media type taken from the prefix when present.
    """
    text = str(value or "")
    match = _DATA_URL_PREFIX_RE.match(text)
    if not match:
        return ImagePayload(data=text)
    return ImagePayload(data=text[match.end() :], media_type=match.group(1))


def encode_image_bytes(image_bytes: bytes, media_type: str = DEFAULT_MEDIA_TYPE) -> str:
    """Encodes raw image bytes as a data URL."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return ImagePayload(data=encoded, media_type=media_type).to_data_url()


def infer_image_media_type(filename: str, fallback: str = DEFAULT_MEDIA_TYPE) -> str:
    """Infers MIME type from a filename extension."""
    guessed, _ = mimetypes.guess_type(filename)
    if guessed and guessed.startswith("image/"):
        return guessed
    return fallback
