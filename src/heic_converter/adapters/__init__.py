from __future__ import annotations

from functools import lru_cache
from typing import Dict, Type

from .base import Codec, encode_image, pillow_format, prepare_image_for_save
from .bitmap import BitmapCodec
from .heif import HeifCodec
from ..detection import SourceKind

_CODEC_CLASSES: Dict[SourceKind, Type[Codec]] = {
    SourceKind.HEIF: HeifCodec,
    SourceKind.BITMAP: BitmapCodec,
}


@lru_cache(maxsize=len(_CODEC_CLASSES))
def get_codec(kind: SourceKind) -> Codec:
    codec_cls = _CODEC_CLASSES.get(kind)
    if not codec_cls:
        raise KeyError(f"No codec registered for {kind}")
    return codec_cls()  # type: ignore[return-value]


__all__ = [
    "BitmapCodec",
    "Codec",
    "HeifCodec",
    "encode_image",
    "get_codec",
    "pillow_format",
    "prepare_image_for_save",
]
