import base64
import shutil
import tempfile
import unittest

from io import BytesIO
from pathlib import Path

import numpy as np

from PIL import Image

from assetsmith.utils.image_utils import (
    decode_texture_image,
    encode_image_to_base64,
    is_image_filename,
)
from tests.unit.bundle_utils import png_bytes


def decode_base64_image(encoded: str) -> Image.Image:
    image = Image.open(BytesIO(base64.b64decode(encoded)))
    image.load()
    return image


class TestImageUtils(unittest.TestCase):
    """Test texture image helpers."""

    def test_is_image_filename(self):
        self.assertTrue(is_image_filename("Wood.PNG"))
        self.assertTrue(is_image_filename("C:\\textures\\bark.tga"))
        self.assertFalse(is_image_filename("chair.mtl"))
        self.assertFalse(is_image_filename("wood.png", extensions=["jpg"]))

    def test_decode_converts_palette_images(self):
        buffer = BytesIO()
        Image.new("P", (3, 2)).save(buffer, format="PNG")

        image = decode_texture_image(buffer.getvalue())

        self.assertEqual(image.mode, "RGB")
        self.assertEqual(image.size, (3, 2))

    def test_decode_rejects_garbage(self):
        with self.assertRaises(Exception):
            decode_texture_image(b"not an image")

    def test_encode_pil_image_as_thumbnail(self):
        """Thumbnails keep the aspect ratio and leave the source image untouched."""
        image = Image.new("RGBA", (400, 200), (10, 200, 30, 255))

        thumbnail = decode_base64_image(encode_image_to_base64(image, max_size=100))

        self.assertEqual(thumbnail.format, "JPEG")
        self.assertEqual(thumbnail.size, (100, 50))
        self.assertEqual(image.size, (400, 200))
        self.assertEqual(image.mode, "RGBA")

    def test_encode_numpy_array(self):
        array = np.zeros((8, 16, 3), dtype=np.uint8)
        decoded = decode_base64_image(encode_image_to_base64(array))
        self.assertEqual(decoded.size, (16, 8))

    def test_encode_path(self):
        temp_dir = Path(tempfile.mkdtemp())
        try:
            path = temp_dir / "wood.png"
            path.write_bytes(png_bytes(size=(6, 6)))

            decoded = decode_base64_image(encode_image_to_base64(path, max_size=3))

            self.assertEqual(decoded.size, (3, 3))
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main()
