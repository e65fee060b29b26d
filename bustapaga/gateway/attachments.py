"""Upload encoding for model requests.

Turns raw uploaded bytes into an inline Attachment: mime type resolved
and preserved, images optionally normalized with Pillow (EXIF orientation,
downscale) and re-encoded in their original format, payload base64 encoded.
PDFs pass through untouched.
"""

from __future__ import annotations

import base64
import io
import logging
import mimetypes

from PIL import Image, ImageOps, UnidentifiedImageError

from bustapaga.config import settings
from bustapaga.gateway.errors import AttachmentError
from bustapaga.schemas.chat import Attachment

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
SUPPORTED_MIME_TYPES: frozenset[str] = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
    PDF_MIME,
})
# Formats Pillow can decode and write back without extra plugins
_NORMALIZABLE: dict[str, str] = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}
_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg", "application/x-pdf": PDF_MIME}

MAX_LONG_SIDE = 2400
JPEG_QUALITY = 90
_EXIF_ORIENTATION = 0x0112


def encode_attachment(
    raw_bytes: bytes,
    mime_type: str | None = None,
    filename: str | None = None,
    *,
    normalize: bool | None = None,
) -> Attachment:
    """Encode an uploaded file for inclusion in a model request.

    Args:
        raw_bytes: File content as uploaded.
        mime_type: Declared content type; guessed from filename/content if absent.
        filename: Original filename, used for mime guessing and logging.
        normalize: Override ``settings.gateway.normalize_images``.

    Returns:
        Attachment with the original mime type and base64 payload.

    Raises:
        AttachmentError: Empty, oversized, unreadable or unsupported file.
    """
    if not raw_bytes:
        raise AttachmentError("Empty upload", user_message="Il file caricato è vuoto.")

    max_bytes = settings.gateway.max_upload_bytes
    if len(raw_bytes) > max_bytes:
        raise AttachmentError(
            f"Upload too large: {len(raw_bytes)} bytes (max {max_bytes})",
            user_message="Il file è troppo grande. Carica un file più piccolo.",
        )

    resolved = resolve_mime_type(raw_bytes, mime_type, filename)
    if resolved not in SUPPORTED_MIME_TYPES:
        raise AttachmentError(f"Unsupported mime type: {resolved}")

    payload = raw_bytes
    do_normalize = settings.gateway.normalize_images if normalize is None else normalize
    if do_normalize and resolved in _NORMALIZABLE:
        payload = normalize_image(raw_bytes, _NORMALIZABLE[resolved])

    logger.debug(
        "Encoded attachment %s (%s): %d -> %d bytes",
        filename or "<unnamed>",
        resolved,
        len(raw_bytes),
        len(payload),
    )
    return Attachment(
        mime_type=resolved,
        data=base64.b64encode(payload).decode("ascii"),
        filename=filename,
        size_bytes=len(payload),
    )


def resolve_mime_type(raw_bytes: bytes, declared: str | None, filename: str | None) -> str:
    """Pick the mime type: declared, else from the filename, else sniffed."""
    candidate = (declared or "").split(";")[0].strip().lower()
    if not candidate or candidate == "application/octet-stream":
        candidate = ""
        if filename:
            candidate = (mimetypes.guess_type(filename)[0] or "").lower()
    if not candidate:
        candidate = _sniff_mime_type(raw_bytes)
    return _MIME_ALIASES.get(candidate, candidate)


def _sniff_mime_type(raw_bytes: bytes) -> str:
    if raw_bytes.startswith(b"%PDF"):
        return PDF_MIME
    try:
        with Image.open(io.BytesIO(raw_bytes)) as img:
            return Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def normalize_image(raw_bytes: bytes, pil_format: str) -> bytes:
    """Apply EXIF orientation and cap the long side, keeping the file format.

    Returns the input unchanged when neither step is needed.

    Raises:
        AttachmentError: If Pillow cannot decode the image.
    """
    try:
        img = Image.open(io.BytesIO(raw_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise AttachmentError(
            f"Cannot decode image: {exc}",
            user_message="Non riesco a leggere l'immagine. Carica una foto leggibile della busta paga.",
        ) from exc

    rotated = img.getexif().get(_EXIF_ORIENTATION, 1) != 1
    oversized = max(img.size) > MAX_LONG_SIDE
    if not rotated and not oversized:
        return raw_bytes

    if rotated:
        img = ImageOps.exif_transpose(img) or img

    if max(img.size) > MAX_LONG_SIDE:
        ratio = MAX_LONG_SIDE / max(img.size)
        img = img.resize((int(img.width * ratio), int(img.height * ratio)), Image.LANCZOS)

    if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    buf = io.BytesIO()
    save_kwargs = {"quality": JPEG_QUALITY} if pil_format in ("JPEG", "WEBP") else {}
    img.save(buf, format=pil_format, **save_kwargs)
    return buf.getvalue()
