from __future__ import annotations

from io import BytesIO
from typing import Protocol

from PIL import Image


PILLOW_FORMATS: dict[str, str] = {
    "png": "PNG",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "webp": "WEBP",
    "bmp": "BMP",
    "tiff": "TIFF",
}

LOSSY_FORMATS = frozenset({"JPEG", "WEBP"})
OPAQUE_FORMATS = frozenset({"JPEG", "BMP"})


class Codec(Protocol):
    def transcode(self, payload: bytes, target_format: str, quality: float) -> bytes | list[bytes]:  # pragma: no cover - interface
        ...


def pillow_format(target_format: str) -> str:
    try:
        return PILLOW_FORMATS[target_format.lower()]
    except KeyError as exc:
        raise ValueError(f"Unsupported target format: {target_format}") from exc


def prepare_image_for_save(img: Image.Image, format_name: str) -> Image.Image:
    if format_name in OPAQUE_FORMATS:
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA", "L", "LA"):
        return img.convert("RGBA")
    return img


def encode_image(img: Image.Image, target_format: str, quality: float) -> bytes:
    format_name = pillow_format(target_format)
    prepared = prepare_image_for_save(img, format_name)
    params: dict[str, object] = {"format": format_name}
    if format_name in LOSSY_FORMATS:
        params["quality"] = max(1, min(100, int(round(quality * 100))))
    buffer = BytesIO()
    prepared.save(buffer, **params)
    return buffer.getvalue()


__all__ = ["Codec", "encode_image", "pillow_format", "prepare_image_for_save"]
