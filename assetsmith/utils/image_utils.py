import base64
import posixpath

from io import BytesIO
from pathlib import Path
from typing import Iterable

import numpy as np

from PIL import Image

DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "bmp", "tga")


def is_image_filename(
    filename: str, extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS
) -> bool:
    """Checks a filename against an image-extension allowlist, ignoring case.

    Args:
        filename: Filename or path to check.
        extensions: Allowed extensions without the leading dot.

    Returns:
        bool: True if the extension is in the allowlist.
    """
    extension = posixpath.splitext(filename.replace("\\", "/"))[1].lstrip(".").lower()
    return extension in {e.lower().lstrip(".") for e in extensions}


def decode_texture_image(data: bytes) -> Image.Image:
    """Decodes texture bytes into a fully loaded PIL image.

    The pixel data is loaded eagerly so decoding errors surface here rather than
    later inside a renderer or exporter.

    Args:
        data: Encoded image bytes (PNG, JPEG, TGA, ...).

    Returns:
        Image.Image: The decoded image in RGB or RGBA mode.
    """
    image = Image.open(BytesIO(data))
    image.load()
    if image.mode not in ("RGB", "RGBA"):
        # Palette and grayscale images are converted so materials get a
        # predictable channel layout.
        converted = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        image.close()
        image = converted
    return image


def encode_image_to_base64(
    image: Image.Image | np.ndarray | str | Path, max_size: int | None = None
) -> str:
    """Encodes an image to a base64 JPEG string.

    Args:
        image: A PIL image, a numpy array of shape (H, W, 3) in RGB format, a
            path string, or a Path object to an image file.
        max_size: If given, the image is downscaled (keeping its aspect ratio)
            so that neither side exceeds this many pixels.

    Returns:
        str: The base64 encoded image string.
    """
    if isinstance(image, (str, Path)):
        with Image.open(image) as img:
            return _encode_jpeg(img, max_size)
    if isinstance(image, np.ndarray):
        return _encode_jpeg(Image.fromarray(image), max_size)
    return _encode_jpeg(image, max_size)


def _encode_jpeg(image: Image.Image, max_size: int | None) -> str:
    # convert() returns a copy, so the caller's image is never resized.
    img = image.convert("RGB")
    if max_size is not None:
        img.thumbnail((max_size, max_size))
    buffer = BytesIO()
    img.save(buffer, format="JPEG")
    img.close()
    return base64.b64encode(buffer.getvalue()).decode("utf-8")
