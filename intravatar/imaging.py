"""
Image transform engine.

Decodes, crops, scales and re-encodes avatar images with Pillow:
- ``scale`` resizes canonical (already square) images on every read
- ``crop_and_scale`` squares and caps raw uploads before they are stored

``scale`` never crops. ``crop_and_scale`` never changes the format or
grows an image.
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from io import BytesIO
from typing import NamedTuple, Tuple

from PIL import Image, ImageDraw

from .config import MAX_SIZE
from .errors import DecodeError, TransformError, UnsupportedFormatError

logger = logging.getLogger("intravatar.imaging")


class ImageFormat(str, Enum):
    """Supported avatar encodings."""
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"

    @classmethod
    def parse(cls, name: str) -> "ImageFormat":
        """
        Parse a format name or file extension.

        ``jpg`` is normalized to ``jpeg``; matching is case-insensitive.

        Raises:
            UnsupportedFormatError: If the name is not a supported format
        """
        normalized = (name or "").strip().lower()
        if normalized == "jpg":
            normalized = "jpeg"
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedFormatError(
                f"Unsupported image format: {name!r}. Supported: jpeg, png, gif"
            ) from None

    @property
    def media_type(self) -> str:
        return f"image/{self.value}"

    def encode_image(self, image: Image.Image) -> bytes:
        """Encode ``image`` in this format."""
        out = BytesIO()
        try:
            if self is ImageFormat.JPEG:
                # JPEG has no alpha or palette
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")
                image.save(out, format="JPEG", quality=90)
            elif self is ImageFormat.PNG:
                image.save(out, format="PNG", optimize=True)
            else:
                image.save(out, format="GIF")
        except (OSError, ValueError) as e:
            raise TransformError(f"Failed to encode {self.value} image: {e}") from e
        data = out.getvalue()
        if not data:
            raise TransformError(f"Encoding {self.value} image produced no data")
        return data


class Transformed(NamedTuple):
    """Encoded output of a transform."""
    data: bytes
    format: ImageFormat
    size: int


def decode(data: bytes) -> Tuple[Image.Image, ImageFormat]:
    """
    Decode image bytes.

    Args:
        data: Raw image bytes

    Returns:
        Tuple of (loaded Pillow image, detected format)

    Raises:
        DecodeError: If the bytes are not a JPEG, PNG or GIF image
    """
    if not data:
        raise DecodeError("Empty image data")
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, EOFError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Invalid image file: {e}") from e

    try:
        fmt = ImageFormat.parse(img.format or "")
    except UnsupportedFormatError as e:
        raise DecodeError(f"Unsupported image type: {img.format}") from e
    return img, fmt


def encode(image: Image.Image, fmt: ImageFormat) -> bytes:
    """
    Encode ``image`` as ``fmt``.

    Raises:
        UnsupportedFormatError: If ``fmt`` is not an ImageFormat
        TransformError: If Pillow fails to write the image
    """
    if not isinstance(fmt, ImageFormat):
        raise UnsupportedFormatError(f"Unsupported image format: {fmt!r}")
    return fmt.encode_image(image)


def _resizable(image: Image.Image) -> Image.Image:
    # Palette and bilevel images would otherwise be resized with NEAREST
    if image.mode in ("RGB", "RGBA", "L"):
        return image
    if image.mode in ("LA", "PA") or "transparency" in image.info:
        return image.convert("RGBA")
    return image.convert("RGB")


def _resize(image: Image.Image, size: int) -> Image.Image:
    try:
        return _resizable(image).resize((size, size), Image.Resampling.BICUBIC)
    except (OSError, ValueError) as e:
        raise TransformError(f"Failed to resize image to {size}x{size}: {e}") from e


def scale(data: bytes, size: int, target_format: ImageFormat | None = None) -> Transformed:
    """
    Resize a square image to ``size`` x ``size``.

    The input is assumed to be square already; non-square input is
    distorted. When size and format already match, ``data`` is returned
    as is without re-encoding.

    Raises:
        DecodeError: If ``data`` cannot be decoded
        TransformError: If resizing or encoding fails
    """
    img, fmt = decode(data)
    target = target_format or fmt
    actual = img.width
    if actual == size and target is fmt:
        return Transformed(data, fmt, size)

    logger.debug(
        "Resizing img from %s %sx%s to %s %sx%s",
        fmt.value, actual, actual, target.value, size, size,
    )
    resized = img if actual == size else _resize(img, size)
    return Transformed(encode(resized, target), target, size)


def crop_and_scale(data: bytes) -> Transformed:
    """
    Turn an uploaded image into a canonical avatar.

    Crops a centered square of side ``min(width, height)`` when the image
    is not square, then downsizes to MAX_SIZE when it is larger. Never
    upsizes; the source format is kept.

    Raises:
        DecodeError: If ``data`` cannot be decoded
        TransformError: If cropping, resizing or encoding fails
    """
    img, fmt = decode(data)
    width, height = img.size
    side = min(width, height)

    if width != height:
        left = (width - side) // 2
        top = (height - side) // 2
        logger.info("Cropping img from %sx%s to %sx%s", width, height, side, side)
        try:
            img = img.crop((left, top, left + side, top + side))
        except (OSError, ValueError) as e:
            raise TransformError(f"Failed to crop image: {e}") from e

    if side > MAX_SIZE:
        logger.info("Resizing img from %sx%s to %sx%s", side, side, MAX_SIZE, MAX_SIZE)
        img = _resize(img, MAX_SIZE)
        side = MAX_SIZE

    return Transformed(encode(img, fmt), fmt, side)


@lru_cache(maxsize=1)
def builtin_default() -> bytes:
    """Built-in fallback avatar: a grey silhouette on a light background."""
    img = Image.new("RGB", (MAX_SIZE, MAX_SIZE), color=(222, 222, 222))
    d = ImageDraw.Draw(img)
    d.ellipse([176, 96, 336, 256], fill=(170, 170, 170))  # head
    d.ellipse([96, 288, 416, 608], fill=(170, 170, 170))  # shoulders
    return ImageFormat.PNG.encode_image(img)
