"""Photo normalisation: any image Pillow can read becomes a bounded JPEG."""

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

__all__ = ["PhotoError", "normalize_photo"]


class PhotoError(Exception):
    """The data is not an image Pillow can decode."""

    pass


def normalize_photo(data: bytes, max_dimension: int = 1600, quality: int = 80) -> bytes:
    """Decode image bytes and re-encode as JPEG.

    Args:
        data: Raw image bytes (JPEG, PNG, ...)
        max_dimension: Longest side after downscaling, in pixels
        quality: JPEG compression quality (1-100)

    Returns:
        JPEG bytes.

    Raises:
        PhotoError: If the bytes are not a readable image.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise PhotoError(f"Not a readable image: {e}") from e

    # Phone cameras store rotation in EXIF
    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    image.thumbnail((max_dimension, max_dimension))

    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=quality, optimize=True)
    jpeg = buf.getvalue()

    logger.debug(
        f"Photo normalised: {image.width}x{image.height}, "
        f"{len(data)} -> {len(jpeg)} bytes"
    )
    return jpeg
