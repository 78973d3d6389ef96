from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageOps

from .base import encode_image


class BitmapCodec:
    """Decodes any Pillow-readable bitmap and re-encodes it directly."""

    def transcode(self, payload: bytes, target_format: str, quality: float) -> bytes:
        with Image.open(BytesIO(payload)) as img:
            img.load()
            bitmap = ImageOps.exif_transpose(img)
            return encode_image(bitmap, target_format, quality)
