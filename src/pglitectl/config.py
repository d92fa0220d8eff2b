"""Configuration loader for pglitectl.

Values are merged from the following sources, later entries winning:

1. Built-in defaults.
2. ``~/.config/pglitectl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PGLITECTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys map onto the flat option names and are coerced via PyYAML's
``safe_load`` so numbers parse naturally, e.g.::

    export PGLITECTL_ROOT_DIR=/tmp/scratch/var
    export PGLITECTL_LOG_POLL_INTERVAL=0.5

The instance root is resolved against the invocation working directory, so the
default ``var`` lands next to wherever the command runs.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load pglitectl configuration. Install with "
        "`pip install pglitectl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "PGLITECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for pglitectl."""

    config_file: Path
    root_dir: Path
    logs_dir: Path
    personality: str
    locale: str
    timezone: str
    role: str
    database: str
    log_poll_interval: float

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "root_dir": str(self.root_dir),
            "logs_dir": str(self.logs_dir),
            "personality": self.personality,
            "locale": self.locale,
            "timezone": self.timezone,
            "role": self.role,
            "database": self.database,
            "log_poll_interval": self.log_poll_interval,
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/pglitectl/config.yml",
    "root_dir": "var",
    "logs_dir": "~/.local/state/pglitectl",
    "personality": "postgres",
    "locale": "en_US.UTF-8",
    "timezone": "UTC",
    "role": "lite",
    "database": "lite",
    "log_poll_interval": 0.1,
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    cwd: Path | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = dict(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        merged.update(file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        merged.update(env_values)

    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged, cwd or Path.cwd())


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

    for key in ("personality", "locale", "timezone", "role", "database"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"{key} must be a non-empty string.")

    _expect_positive_float(raw.get("log_poll_interval"), "log_poll_interval", default=0.1)


def _build_app_config(raw: Mapping[str, object], cwd: Path) -> AppConfig:
    root_dir = _to_path(raw.get("root_dir"))
    if not root_dir.is_absolute():
        root_dir = cwd / root_dir
    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        root_dir=root_dir,
        logs_dir=_to_path(raw.get("logs_dir")),
        personality=str(raw["personality"]).strip(),
        locale=str(raw["locale"]).strip(),
        timezone=str(raw["timezone"]).strip(),
        role=str(raw["role"]).strip(),
        database=str(raw["database"]).strip(),
        log_poll_interval=_expect_positive_float(
            raw.get("log_poll_interval"), "log_poll_interval", default=0.1
        ),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        if not suffix:
            continue
        overrides[suffix.lower()] = _coerce_value(value)
    return overrides


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
    "DEFAULTS",
    "load_config",
]
