from __future__ import annotations

from enum import Enum

from .utils import suffix_of


class SourceKind(str, Enum):
    HEIF = "heif"
    BITMAP = "bitmap"
    UNKNOWN = "unknown"


# ISO-BMFF major brands used by HEIC/HEIF stills and sequences.
HEIF_BRANDS = frozenset({b"heic", b"heix", b"heim", b"heis", b"hevc", b"hevx", b"mif1", b"msf1", b"avif"})

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def sniff_kind(payload: bytes) -> SourceKind:
    """Identify the container from its leading bytes."""

    if len(payload) >= 12 and payload[4:8] == b"ftyp" and payload[8:12] in HEIF_BRANDS:
        return SourceKind.HEIF
    if payload.startswith(JPEG_MAGIC) or payload.startswith(PNG_MAGIC):
        return SourceKind.BITMAP
    return SourceKind.UNKNOWN


def detect_source_kind(
    payload: bytes,
    declared_type: str | None,
    declared_name: str,
    *,
    fallback_types: frozenset[str] = frozenset(),
    fallback_suffixes: frozenset[str] = frozenset(),
) -> SourceKind:
    """Resolve which codec path should handle an input.

    The payload signature wins over the declared hints; hints only decide when
    the bytes are not recognised.
    """

    sniffed = sniff_kind(payload)
    if sniffed is not SourceKind.UNKNOWN:
        return sniffed
    media_type = (declared_type or "").strip().lower()
    if media_type and media_type in fallback_types:
        return SourceKind.BITMAP
    if suffix_of(declared_name) in fallback_suffixes:
        return SourceKind.BITMAP
    return SourceKind.HEIF


__all__ = ["SourceKind", "detect_source_kind", "sniff_kind"]
