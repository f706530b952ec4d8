"""Configuration loader for kcsc.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.config/kcsc/config.yml`` (or an override path).
3. Environment variables prefixed with ``KCSC_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export KCSC_POLL__INTERVAL=2
    export KCSC_COPY_JOB__IMAGE=registry.local/rsync:3

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "KCSC_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_COPY_COMMAND: tuple[str, ...] = ("rsync", "-avx", "/old/", "/new")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PollConfig:
    """Timing for the wait loops used by the migration steps."""

    interval: float = 1.0
    timeout: float | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"interval": self.interval, "timeout": self.timeout}


@dataclass(frozen=True)
class CopyJobConfig:
    """Container settings for the data-copy Job."""

    image: str = "eeacms/rsync"
    command: tuple[str, ...] = DEFAULT_COPY_COMMAND
    backoff_limit: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "image": self.image,
            "command": list(self.command),
            "backoff_limit": self.backoff_limit,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for kcsc."""

    config_file: Path
    logs_dir: Path
    kubeconfig: Path | None
    temp_prefix: str
    reserved_annotation_prefixes: tuple[str, ...]
    poll: PollConfig
    copy_job: CopyJobConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "kubeconfig": str(self.kubeconfig) if self.kubeconfig else None,
            "temp_prefix": self.temp_prefix,
            "reserved_annotation_prefixes": list(self.reserved_annotation_prefixes),
            "poll": self.poll.to_dict(),
            "copy_job": self.copy_job.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/kcsc/config.yml",
    "logs_dir": "~/.local/state/kcsc/logs",
    "kubeconfig": None,  # falls back to $KUBECONFIG / ~/.kube/config
    "temp_prefix": "csc",
    "reserved_annotation_prefixes": ["pv.kubernetes.io/"],
    "poll": {
        "interval": 1.0,
        "timeout": None,
    },
    "copy_job": {
        "image": "eeacms/rsync",
        "command": list(DEFAULT_COPY_COMMAND),
        "backoff_limit": 0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    poll = raw.get("poll")
    if poll is not None:
        poll_map = _as_dict(poll, "poll")
        unknown = set(poll_map.keys()) - {"interval", "timeout"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown poll configuration keys: {joined}.")

    copy_job = raw.get("copy_job")
    if copy_job is not None:
        copy_map = _as_dict(copy_job, "copy_job")
        unknown = set(copy_map.keys()) - {"image", "command", "backoff_limit"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown copy_job configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))

    kubeconfig_value = raw.get("kubeconfig")
    kubeconfig: Path | None = None
    if isinstance(kubeconfig_value, (str, Path)):
        if str(kubeconfig_value).strip():
            kubeconfig = _to_path(kubeconfig_value)
    elif kubeconfig_value is not None:
        raise ConfigError("kubeconfig must be a string, Path, or null.")

    temp_prefix = _expect_str(raw.get("temp_prefix", "csc"), "temp_prefix").strip()
    if not temp_prefix:
        raise ConfigError("temp_prefix must be a non-empty string.")

    prefixes_raw = raw.get("reserved_annotation_prefixes")
    prefixes: tuple[str, ...] = ()
    if prefixes_raw is not None:
        prefixes = tuple(
            _expect_str(item, f"reserved_annotation_prefixes[{index}]")
            for index, item in enumerate(
                _as_sequence(prefixes_raw, "reserved_annotation_prefixes")
            )
        )

    poll_mapping = _as_dict(raw.get("poll"), "poll")
    interval = _expect_positive_float(poll_mapping.get("interval"), "poll.interval", default=1.0)
    timeout_value = poll_mapping.get("timeout")
    timeout: float | None = None
    if timeout_value is not None:
        timeout = _expect_positive_float(timeout_value, "poll.timeout", default=1.0)
    poll = PollConfig(interval=interval, timeout=timeout)

    copy_mapping = _as_dict(raw.get("copy_job"), "copy_job")
    image = _expect_str(copy_mapping.get("image", "eeacms/rsync"), "copy_job.image").strip()
    if not image:
        raise ConfigError("copy_job.image must be a non-empty string.")
    command_raw = copy_mapping.get("command")
    command: tuple[str, ...] = DEFAULT_COPY_COMMAND
    if command_raw is not None:
        command = tuple(
            _expect_str(item, f"copy_job.command[{index}]")
            for index, item in enumerate(_as_sequence(command_raw, "copy_job.command"))
        )
        if not command:
            raise ConfigError("copy_job.command must contain at least one argument.")
    backoff_limit = _expect_int(
        copy_mapping.get("backoff_limit"), "copy_job.backoff_limit", default=0
    )
    if backoff_limit < 0:
        raise ConfigError("copy_job.backoff_limit must be non-negative.")

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        kubeconfig=kubeconfig,
        temp_prefix=temp_prefix,
        reserved_annotation_prefixes=prefixes,
        poll=poll,
        copy_job=CopyJobConfig(image=image, command=command, backoff_limit=backoff_limit),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "CopyJobConfig",
    "PollConfig",
    "load_config",
]
