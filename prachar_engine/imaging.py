"""
Pillow helpers for generated images: decoding, thumbnails, encoding.
"""

import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from .errors import GenerationFailure


def decode_image(data: bytes) -> Image.Image:
    """
    Decode image bytes returned by a generation endpoint.

    Raises:
        GenerationFailure: If the payload is empty or not an image
    """
    if not data:
        raise GenerationFailure("Image endpoint returned an empty payload")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise GenerationFailure(f"Image endpoint returned unreadable data: {e}")
    return img


def to_png_bytes(img: Image.Image) -> bytes:
    # Ensure RGB for PNG save
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def crop_center(img: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Crop to the target aspect ratio around the center, then resize."""
    width, height = img.size
    target_ratio = size[0] / size[1]
    current_ratio = width / height

    if current_ratio > target_ratio:
        # Too wide, crop width
        new_width = int(height * target_ratio)
        left = (width - new_width) // 2
        img = img.crop((left, 0, left + new_width, height))
    else:
        # Too tall, crop height
        new_height = int(width / target_ratio)
        top = (height - new_height) // 2
        img = img.crop((0, top, width, top + new_height))

    return img.resize(size, Image.LANCZOS)


def make_thumbnail(img: Image.Image, size: Tuple[int, int]) -> bytes:
    """Build PNG thumbnail bytes for a decoded image."""
    return to_png_bytes(crop_center(img.convert("RGB"), size))
