"""Configuration loader for batch conversion runs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

from markpack.core import config as core_config
from markpack.core import workspace as workspace_mod

from .errors import BatchConfigError, ValidationError
from .models import ConversionOptions

CONFIG_FILENAME = "batch.toml"
CONFIG_ENV = "MARKPACK_CONFIG"
ENV_PREFIX = "MARKPACK_"

_DEFAULT_MAX_WORKERS = 4
_DEFAULT_ITEM_TIMEOUT = 300.0
_DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class TranscriptionSettings:
    """Settings for the speech-to-text service."""

    model: str = "whisper-1"
    cache_ttl: float = 300.0
    min_interval: float = 1.0
    request_timeout: float = 300.0


@dataclass(frozen=True)
class BatchConfig:
    """Fully resolved configuration for a batch run."""

    output_dir: Optional[Path] = None
    max_workers: int = _DEFAULT_MAX_WORKERS
    item_timeout: Optional[float] = _DEFAULT_ITEM_TIMEOUT
    options: ConversionOptions = field(default_factory=ConversionOptions)
    transcription: TranscriptionSettings = field(
        default_factory=TranscriptionSettings
    )
    log_level: str = _DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class ConfigOverrides:
    """CLI-sourced overrides applied on top of file/env options."""

    output_dir: Optional[Path] = None
    max_workers: Optional[int] = None
    item_timeout: Optional[float] = None
    log_level: Optional[str] = None


@dataclass(frozen=True)
class LoadResult:
    """Result of loading configuration, including workspace context."""

    config: BatchConfig
    layout: workspace_mod.WorkspaceLayout
    config_path: Optional[Path]


def load_config(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[ConfigOverrides] = None,
    env: Optional[Mapping[str, str]] = None,
    workspace_path: Optional[Path] = None,
) -> LoadResult:
    """Load configuration applying precedence CLI > env > TOML > defaults."""

    overrides = overrides or ConfigOverrides()
    env_map = os.environ if env is None else env

    try:
        layout = workspace_mod.ensure_workspace(
            env=env_map, path=workspace_path
        )
    except workspace_mod.WorkspaceError as exc:
        raise BatchConfigError(str(exc)) from exc
    default_path = layout.path_for("config") / CONFIG_FILENAME

    requested_path = _resolve_config_path(
        config_path=config_path,
        env_map=env_map,
        default_path=default_path,
    )

    file_options = _default_table()
    loaded_path: Optional[Path]

    if requested_path.exists():
        loaded_path = requested_path
        try:
            parsed = core_config.load_toml(requested_path)
            file_options = core_config.merge_defaults(file_options, parsed)
        except core_config.TomlConfigError as exc:
            raise BatchConfigError(str(exc)) from exc
    else:
        loaded_path = None
        if config_path is not None or _has_env_config(env_map):
            raise BatchConfigError(f"Config file not found: {requested_path}")

    output_dir = _resolve_output_dir(
        candidate=_pick_first(
            overrides.output_dir,
            _parse_env_path(env_map, "OUTPUT_DIR"),
            _coerce_optional_path(file_options["paths"]["output_dir"]),
        ),
        layout=layout,
    )

    max_workers = _require_positive_int(
        _pick_first(
            overrides.max_workers,
            _parse_env_number(env_map, "MAX_WORKERS", int),
            file_options["execution"]["max_workers"],
        ),
        "execution.max_workers",
    )

    item_timeout = _resolve_timeout(
        _pick_first(
            overrides.item_timeout,
            _parse_env_number(env_map, "ITEM_TIMEOUT", float),
            file_options["execution"]["item_timeout"],
        )
    )

    try:
        options = ConversionOptions.from_mapping(file_options["options"])
    except ValidationError as exc:
        raise BatchConfigError(f"Invalid [options] table: {exc}") from exc

    transcription = _resolve_transcription(
        file_options["transcription"], env_map
    )

    log_level = _resolve_log_level(
        _pick_first(
            overrides.log_level,
            _parse_env_string(env_map, "LOG_LEVEL"),
            file_options["logging"]["level"],
        )
    )

    config = BatchConfig(
        output_dir=output_dir,
        max_workers=max_workers,
        item_timeout=item_timeout,
        options=options,
        transcription=transcription,
        log_level=log_level,
    )
    return LoadResult(config=config, layout=layout, config_path=loaded_path)


def _default_table() -> MutableMapping[str, MutableMapping[str, Any]]:
    options = ConversionOptions()
    transcription = TranscriptionSettings()
    return {
        "paths": {"output_dir": None},
        "execution": {
            "max_workers": _DEFAULT_MAX_WORKERS,
            "item_timeout": _DEFAULT_ITEM_TIMEOUT,
        },
        "options": {
            "include_images": options.include_images,
            "include_meta": options.include_meta,
            "convert_links": options.convert_links,
            "crawl_depth": options.crawl_depth,
            "max_pages": options.max_pages,
        },
        "transcription": {
            "model": transcription.model,
            "cache_ttl": transcription.cache_ttl,
            "min_interval": transcription.min_interval,
            "request_timeout": transcription.request_timeout,
        },
        "logging": {"level": _DEFAULT_LOG_LEVEL},
    }


def _resolve_config_path(
    *,
    config_path: Optional[Path],
    env_map: Mapping[str, str],
    default_path: Path,
) -> Path:
    if config_path is not None:
        return config_path.expanduser()
    env_candidate = env_map.get(CONFIG_ENV)
    if env_candidate and env_candidate.strip():
        return Path(env_candidate.strip()).expanduser()
    return default_path


def _has_env_config(env_map: Mapping[str, str]) -> bool:
    env_candidate = env_map.get(CONFIG_ENV)
    return bool(env_candidate and env_candidate.strip())


def _coerce_optional_path(value: object) -> Optional[Path]:
    if value is None:
        return None
    if isinstance(value, Path):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        return Path(raw)
    raise BatchConfigError("paths.output_dir must be a string when provided.")


def _resolve_output_dir(
    *, candidate: Optional[Path], layout: workspace_mod.WorkspaceLayout
) -> Path:
    if candidate is None:
        return layout.path_for("archives")
    if not candidate.is_absolute():
        return (layout.home / candidate).resolve()
    return candidate.expanduser().resolve()


def _require_positive_int(value: object, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise BatchConfigError(f"{key} must be an integer.")
    if value < 1:
        raise BatchConfigError(f"{key} must be at least 1.")
    return value


def _resolve_timeout(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BatchConfigError("execution.item_timeout must be a number.")
    if value <= 0:
        # Zero or negative disables the per-item limit.
        return None
    return float(value)


def _resolve_transcription(
    table: Mapping[str, Any], env_map: Mapping[str, str]
) -> TranscriptionSettings:
    model = _pick_first(
        _parse_env_string(env_map, "TRANSCRIPTION_MODEL"), table["model"]
    )
    if not isinstance(model, str) or not model.strip():
        raise BatchConfigError(
            "transcription.model must be a non-empty string."
        )

    numbers: dict[str, float] = {}
    for key in ("cache_ttl", "min_interval", "request_timeout"):
        value = table[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BatchConfigError(f"transcription.{key} must be a number.")
        if value < 0:
            raise BatchConfigError(f"transcription.{key} must not be negative.")
        numbers[key] = float(value)

    return TranscriptionSettings(model=model.strip(), **numbers)


def _resolve_log_level(candidate: object) -> str:
    if candidate is None:
        raise BatchConfigError("logging.level must be provided.")
    if not isinstance(candidate, str):
        raise BatchConfigError("logging.level must be a string.")
    level = candidate.strip()
    if not level:
        raise BatchConfigError("logging.level must be a non-empty string.")
    return level.upper()


def _parse_env_number(
    env_map: Mapping[str, str], key: str, kind: type
) -> Optional[Any]:
    raw = _parse_env_string(env_map, key)
    if raw is None:
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise BatchConfigError(
            f"{ENV_PREFIX}{key} must be a valid {kind.__name__}, got '{raw}'."
        ) from exc


def _parse_env_path(env_map: Mapping[str, str], key: str) -> Optional[Path]:
    raw = _parse_env_string(env_map, key)
    if raw is None:
        return None
    return Path(raw).expanduser()


def _parse_env_string(env_map: Mapping[str, str], key: str) -> Optional[str]:
    raw = env_map.get(f"{ENV_PREFIX}{key}")
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _pick_first(*candidates: object) -> object:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None
