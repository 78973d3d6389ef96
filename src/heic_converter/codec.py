from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping

from .adapters import Codec, get_codec
from .config import AppConfig
from .detection import SourceKind, detect_source_kind
from .errors import ConversionError

logger = logging.getLogger(__name__)

REASON_CONVERSION_FAILED = "conversion failed"


@dataclass(slots=True)
class CodecOutput:
    payload: bytes
    name: str
    kind: SourceKind


class CodecAdapter:
    """Converts one admitted file into the configured target format."""

    def __init__(self, config: AppConfig, codecs: Mapping[SourceKind, Codec] | None = None) -> None:
        self._config = config
        self._codecs = dict(codecs) if codecs is not None else {}
        admission = config.admission
        self._fallback_enabled = admission.enable_fallback_codec
        self._fallback_types = frozenset(t.lower() for t in admission.fallback_media_types)
        self._fallback_suffixes = frozenset(s.lower() for s in admission.fallback_suffixes)
        self._suffix_re = _suffix_pattern(config.source_suffixes)

    def derive_output_name(self, declared_name: str) -> str:
        target = self._config.target_suffix
        if self._suffix_re is not None:
            renamed, count = self._suffix_re.subn(target, declared_name, count=1)
            if count:
                return renamed
        return f"{declared_name}{target}"

    def resolve_kind(self, payload: bytes, declared_type: str | None, declared_name: str) -> SourceKind:
        if not self._fallback_enabled:
            return SourceKind.HEIF
        return detect_source_kind(
            payload,
            declared_type,
            declared_name,
            fallback_types=self._fallback_types,
            fallback_suffixes=self._fallback_suffixes,
        )

    def convert(self, payload: bytes, declared_type: str | None, declared_name: str) -> CodecOutput:
        runtime = self._config.runtime
        kind = self.resolve_kind(payload, declared_type, declared_name)
        try:
            codec = self._codec_for(kind)
            result = codec.transcode(payload, runtime.target_format, runtime.target_quality)
            if isinstance(result, (list, tuple)):
                if not result:
                    raise ValueError("codec returned no output")
                result = result[0]
            if not result:
                raise ValueError("codec returned an empty payload")
        except Exception as exc:
            logger.warning("Conversion of %s failed via %s codec: %s", declared_name, kind.value, exc)
            raise ConversionError("CONVERSION_FAILED", REASON_CONVERSION_FAILED) from exc
        return CodecOutput(payload=bytes(result), name=self.derive_output_name(declared_name), kind=kind)

    def _codec_for(self, kind: SourceKind) -> Codec:
        codec = self._codecs.get(kind)
        if codec is None:
            codec = get_codec(kind)
        return codec


def _suffix_pattern(suffixes: tuple[str, ...]) -> re.Pattern[str] | None:
    cleaned = sorted({s.lower() for s in suffixes if s}, key=len, reverse=True)
    if not cleaned:
        return None
    alternation = "|".join(re.escape(s) for s in cleaned)
    return re.compile(rf"(?:{alternation})$", re.IGNORECASE)


__all__ = ["CodecAdapter", "CodecOutput", "REASON_CONVERSION_FAILED"]
