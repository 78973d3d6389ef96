from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping


CONFIG_FILE = Path("config.toml")


@dataclass(slots=True)
class AdmissionConfig:
    accepted_suffixes: tuple[str, ...] = (".heic", ".heif")
    accepted_media_types: tuple[str, ...] = ("image/heic", "image/heif")
    enable_fallback_codec: bool = False
    fallback_suffixes: tuple[str, ...] = (".jpg", ".jpeg")
    fallback_media_types: tuple[str, ...] = ("image/jpeg",)


@dataclass(slots=True)
class RuntimeConfig:
    max_files: int = 100
    max_file_size_mb: int = 50
    concurrency: int = 3
    target_format: str = "png"
    target_quality: float = 0.9
    archive_name: str = "converted_images.zip"
    log_file: Path | None = None

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)

    @property
    def target_suffix(self) -> str:
        fmt = self.runtime.target_format.lower()
        return ".jpg" if fmt == "jpeg" else f".{fmt}"

    @property
    def source_suffixes(self) -> tuple[str, ...]:
        suffixes = tuple(self.admission.accepted_suffixes)
        if self.admission.enable_fallback_codec:
            suffixes += tuple(self.admission.fallback_suffixes)
        return suffixes


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _tuple_of_strings(value: object | None, default: Iterable[str]) -> tuple[str, ...]:
    if value is None:
        return tuple(default)
    if isinstance(value, str):
        return (value.lower(),) if value else ()
    if isinstance(value, Iterable):
        return tuple(str(item).lower() for item in value)
    raise TypeError(f"Unsupported list configuration: {value!r}")


def _parse_bool(value: object | None, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Unsupported boolean configuration: {value!r}")


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    log_file = data.get("log_file")
    return RuntimeConfig(
        max_files=int(data.get("max_files", 100)),
        max_file_size_mb=int(data.get("max_file_size_mb", 50)),
        concurrency=int(data.get("concurrency", 3)),
        target_format=str(data.get("target_format", "png")).lower(),
        target_quality=float(data.get("target_quality", 0.9)),
        archive_name=str(data.get("archive_name", "converted_images.zip")),
        log_file=Path(str(log_file)) if log_file else None,
    )


def _build_admission(data: Mapping[str, object] | None) -> AdmissionConfig:
    defaults = AdmissionConfig()
    if not data:
        return defaults
    return AdmissionConfig(
        accepted_suffixes=_tuple_of_strings(data.get("accepted_suffixes"), defaults.accepted_suffixes),
        accepted_media_types=_tuple_of_strings(data.get("accepted_media_types"), defaults.accepted_media_types),
        enable_fallback_codec=_parse_bool(data.get("enable_fallback_codec"), defaults.enable_fallback_codec),
        fallback_suffixes=_tuple_of_strings(data.get("fallback_suffixes"), defaults.fallback_suffixes),
        fallback_media_types=_tuple_of_strings(data.get("fallback_media_types"), defaults.fallback_media_types),
    )


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CONFIG_FILE
    raw = _read_toml(path)
    runtime_data = raw.get("runtime") if isinstance(raw, Mapping) else None
    admission_data = raw.get("admission") if isinstance(raw, Mapping) else None
    runtime = _build_runtime(runtime_data if isinstance(runtime_data, Mapping) else None)
    admission = _build_admission(admission_data if isinstance(admission_data, Mapping) else None)
    return AppConfig(runtime=runtime, admission=admission)


def dump_config(config: AppConfig) -> str:
    payload = {
        "runtime": {
            "max_files": config.runtime.max_files,
            "max_file_size_mb": config.runtime.max_file_size_mb,
            "concurrency": config.runtime.concurrency,
            "target_format": config.runtime.target_format,
            "target_quality": config.runtime.target_quality,
            "archive_name": config.runtime.archive_name,
            "log_file": str(config.runtime.log_file) if config.runtime.log_file else None,
        },
        "admission": {
            "accepted_suffixes": list(config.admission.accepted_suffixes),
            "accepted_media_types": list(config.admission.accepted_media_types),
            "enable_fallback_codec": config.admission.enable_fallback_codec,
            "fallback_suffixes": list(config.admission.fallback_suffixes),
            "fallback_media_types": list(config.admission.fallback_media_types),
        },
    }
    return json.dumps(payload, indent=2)


__all__ = [
    "AdmissionConfig",
    "AppConfig",
    "RuntimeConfig",
    "dump_config",
    "load_config",
]
