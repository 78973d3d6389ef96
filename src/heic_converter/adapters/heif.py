from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageSequence

from .base import encode_image


class HeifCodec:
    """Decodes HEIC/HEIF containers through the pillow-heif opener."""

    def __init__(self) -> None:
        try:
            from pillow_heif import register_heif_opener
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise RuntimeError("pillow-heif dependency is required for HEIC/HEIF input") from exc

        register_heif_opener()

    def transcode(self, payload: bytes, target_format: str, quality: float) -> bytes | list[bytes]:
        with Image.open(BytesIO(payload), formats=["HEIF"]) as img:
            outputs = [encode_image(frame.copy(), target_format, quality) for frame in ImageSequence.Iterator(img)]
        if len(outputs) == 1:
            return outputs[0]
        return outputs
