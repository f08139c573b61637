"""Small helpers for image payloads."""

import base64
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

SUPPORTED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

_PIL_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}


@dataclass(frozen=True)
class ImageInfo:
    """Decoded properties of an image."""

    mime_type: str | None
    width: int
    height: int
    dpi: float | None = None


def detect_mime_type(image_bytes: bytes) -> str | None:
    """Infer an image MIME type from its file signature."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return None


def inspect_image(image_bytes: bytes) -> ImageInfo:
    """Fully decode an image and report its format, size and density.

    Raises ValueError when the bytes are not a decodable image.
    """
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            image.load()
            dpi = image.info.get("dpi")
            return ImageInfo(
                mime_type=_PIL_FORMATS.get(image.format or ""),
                width=image.width,
                height=image.height,
                dpi=float(max(dpi)) if dpi else None,
            )
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Unreadable image: {exc}") from exc
    except (OSError, SyntaxError) as exc:
        raise ValueError(f"Corrupt image data: {exc}") from exc


def to_base64(image_bytes: bytes) -> str:
    """Encode bytes as plain base64 text."""
    return base64.b64encode(image_bytes).decode("utf-8")


def to_data_url(image_bytes: bytes, default_mime: str = "image/jpeg") -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = detect_mime_type(image_bytes) or default_mime
    return f"data:{mime_type};base64,{to_base64(image_bytes)}"
