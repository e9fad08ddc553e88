"""Image payloads and the dimension guard.

Every image that moves between pipeline stages is an ``ImageBuffer``: base64
data plus its MIME type and decoded pixel size. Buffers are immutable; a
stage that changes an image returns a new buffer.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from errors import ImageDecodeError

log = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.IGNORECASE | re.DOTALL)

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


def normalise_mime(mime_type: Optional[str]) -> str:
    mime = (mime_type or "image/png").lower()
    if mime == "image/jpg":
        return "image/jpeg"
    if not mime.startswith("image/"):
        return "image/png"
    return mime


def split_data_uri(value: str) -> Tuple[str, str]:
    """Return (mime_type, base64_data). Bare base64 is treated as JPEG."""
    value = value.strip()
    match = _DATA_URI_RE.match(value)
    if match:
        return normalise_mime(match.group(1)), match.group(2).strip()
    if value.startswith("data:"):
        raise ImageDecodeError("Invalid data URI format")
    return "image/jpeg", value


def _measure(raw: bytes) -> Tuple[int, int, Optional[str]]:
    try:
        with Image.open(io.BytesIO(raw)) as img:
            return img.width, img.height, img.format
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc


@dataclass(frozen=True)
class ImageBuffer:
    mime_type: str
    data: str  # base64, no data-URI prefix
    width: int
    height: int

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: Optional[str] = None) -> "ImageBuffer":
        width, height, fmt = _measure(raw)
        mime = normalise_mime(mime_type or _FORMAT_MIME.get(fmt or "", "image/png"))
        return cls(mime, base64.b64encode(raw).decode("ascii"), width, height)

    @classmethod
    def from_base64(cls, data: str, mime_type: Optional[str] = None) -> "ImageBuffer":
        try:
            raw = base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ImageDecodeError(f"Invalid base64 image data: {exc}") from exc
        if not raw:
            raise ImageDecodeError("Image data is empty")
        return cls.from_bytes(raw, mime_type)

    @classmethod
    def from_data_uri(cls, value: str) -> "ImageBuffer":
        if not isinstance(value, str) or not value.strip():
            raise ImageDecodeError("Image data must be a non-empty data URI string")
        mime, data = split_data_uri(value)
        return cls.from_base64(data, mime)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def __repr__(self) -> str:  # keep base64 out of logs and tracebacks
        return f"ImageBuffer({self.mime_type}, {self.width}x{self.height}, {len(self.data)} b64 chars)"


def resize_to(image: ImageBuffer, width: int, height: int) -> ImageBuffer:
    """Return a copy of ``image`` scaled to exactly width x height."""
    with Image.open(io.BytesIO(image.to_bytes())) as src:
        resized = src.resize((width, height), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    if image.mime_type == "image/jpeg":
        resized.convert("RGB").save(out, "JPEG", quality=95)
        mime = "image/jpeg"
    else:
        resized.save(out, "PNG", optimize=True)
        mime = "image/png"
    return ImageBuffer.from_bytes(out.getvalue(), mime)


# ---------------------------------------------------------------------------
# Dimension guard
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GuardResult:
    valid: bool
    corrected_image: Optional[ImageBuffer] = None

    def resolve(self, candidate: ImageBuffer) -> ImageBuffer:
        """The image downstream stages should use."""
        return self.corrected_image or candidate


class DimensionGuard:
    """Keeps oracle output on the reference image's pixel geometry.

    ``aspect_tolerance=None`` requires an exact width/height match; a float
    accepts any candidate whose aspect ratio is within that distance of the
    reference. Mismatches are resized to the reference size. A failed resize
    yields ``GuardResult(valid=False)`` with no correction.
    """

    def __init__(self, aspect_tolerance: Optional[float] = None) -> None:
        self.aspect_tolerance = aspect_tolerance

    def _matches(self, reference: ImageBuffer, candidate: ImageBuffer) -> bool:
        if self.aspect_tolerance is None:
            return reference.size == candidate.size
        return abs(reference.aspect_ratio - candidate.aspect_ratio) <= self.aspect_tolerance

    def check(self, reference: ImageBuffer, candidate: ImageBuffer, context: str) -> GuardResult:
        if self._matches(reference, candidate):
            return GuardResult(valid=True)

        log.info(
            "Dimension mismatch [%s]: expected %dx%d, got %dx%d. Correcting…",
            context, reference.width, reference.height, candidate.width, candidate.height,
        )
        try:
            corrected = resize_to(candidate, reference.width, reference.height)
        except (ImageDecodeError, OSError, ValueError) as exc:
            log.warning("Dimension correction failed [%s]: %s", context, exc)
            return GuardResult(valid=False)
        return GuardResult(valid=False, corrected_image=corrected)
