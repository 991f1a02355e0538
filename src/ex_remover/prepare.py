"""Image preparation for provider requests."""

import base64
import io
import logging
from dataclasses import dataclass

from PIL import Image

from ex_remover.records import Point

logger = logging.getLogger(__name__)

# Maximum long edge for vision requests (reduces tokens while preserving quality)
MAX_LONG_EDGE = 1568

# HEIC support
try:
    import pillow_heif

    pillow_heif.register_heif_opener()
    HEIC_SUPPORTED = True
except ImportError:
    HEIC_SUPPORTED = False
    logger.warning("pillow-heif not installed, HEIC images cannot be sent")

# Formats the provider accepts as-is
PASSTHROUGH_TYPES = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}


@dataclass(frozen=True)
class PreparedImage:
    """Base64 payload ready for a vision request."""

    base64_data: str
    media_type: str
    width: int
    height: int
    scale: float

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.base64_data}"


def resize_image(img: Image.Image, max_long_edge: int = MAX_LONG_EDGE) -> Image.Image:
    """Resize image if long edge exceeds max_long_edge.

    Args:
        img: PIL Image object
        max_long_edge: Maximum dimension for long edge

    Returns:
        Resized PIL Image (or original if already smaller)
    """
    width, height = img.size
    long_edge = max(width, height)

    if long_edge <= max_long_edge:
        return img

    if width > height:
        new_width = max_long_edge
        new_height = int(height * (max_long_edge / width))
    else:
        new_height = max_long_edge
        new_width = int(width * (max_long_edge / height))

    logger.debug(f"Resizing image from {width}x{height} to {new_width}x{new_height}")
    return img.resize((new_width, new_height), Image.Resampling.LANCZOS)


def convert_to_rgb(img: Image.Image) -> Image.Image:
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def encode_image_base64(img: Image.Image, format: str = "JPEG") -> str:
    """Encode PIL Image to base64 string."""
    return base64.b64encode(encode_image(img, format)).decode("utf-8")


def encode_image(img: Image.Image, format: str = "JPEG") -> bytes:
    buffer = io.BytesIO()
    if format == "JPEG":
        img = convert_to_rgb(img)
    img.save(buffer, format=format, quality=95)
    return buffer.getvalue()


def _open(data: bytes, mime_type: str) -> Image.Image:
    if mime_type == "image/heic" and not HEIC_SUPPORTED:
        raise ValueError("HEIC images require pillow-heif to be installed")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.copy()
    except Exception as e:
        raise ValueError(f"Cannot decode image ({mime_type}): {e}") from e


def prepare_image(
    data: bytes, mime_type: str, max_long_edge: int = MAX_LONG_EDGE
) -> PreparedImage:
    """Downscale and encode an image for a vision request.

    - Resize if needed (> max_long_edge)
    - Convert HEIC (and anything else unsupported) to JPEG

    Raises:
        ValueError: If the image cannot be decoded
    """
    img = _open(data, mime_type)
    original_width = img.size[0]

    format_name = PASSTHROUGH_TYPES.get(mime_type, "JPEG")
    media_type = mime_type if mime_type in PASSTHROUGH_TYPES else "image/jpeg"

    img = resize_image(img, max_long_edge)
    width, height = img.size

    return PreparedImage(
        base64_data=encode_image_base64(img, format=format_name),
        media_type=media_type,
        width=width,
        height=height,
        scale=width / original_width if original_width else 1.0,
    )


def scale_point(point: Point, scale: float) -> Point:
    """Map a natural-pixel point onto a resized copy of the image."""
    if scale == 1.0:
        return point
    return Point(round(point.x * scale), round(point.y * scale))


def prepare_upload(data: bytes, mime_type: str, filename: str) -> tuple[str, bytes, str]:
    """Build the ``(filename, bytes, mime)`` upload tuple for an edit request.

    Supported formats go through untouched; others are re-encoded as PNG.
    """
    if mime_type in PASSTHROUGH_TYPES:
        stem = filename.rsplit(".", 1)[0] or "image"
        return f"{stem}{EXTENSIONS[mime_type]}", data, mime_type

    logger.debug(f"Converting {filename} ({mime_type}) to PNG for upload")
    img = _open(data, mime_type)
    stem = filename.rsplit(".", 1)[0] or "image"
    return f"{stem}.png", encode_image(img, "PNG"), "image/png"


def sniff_media_type(data: bytes) -> str:
    """Guess the MIME type of image bytes from their signature."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"
