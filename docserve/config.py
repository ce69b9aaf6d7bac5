"""Configuration loading for docserve (.docserve.yml)."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = ".docserve.yml"
DEFAULT_QUIET_PERIOD_MS = 300
DEFAULT_PORT = 8000


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed or resolved."""


@dataclass
class BuildConfig:
    """Documentation builder settings."""

    preset: Optional[str] = None
    command: List[str] = field(default_factory=list)
    output_dir: Optional[str] = None
    cwd: Optional[str] = None


@dataclass
class WatchConfig:
    """Change detection and debounce settings."""

    enabled: bool = True
    quiet_period_ms: int = DEFAULT_QUIET_PERIOD_MS
    exclude: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)


@dataclass
class ServeConfig:
    """HTTP listener settings."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    index: Optional[str] = None
    public: bool = False

    @property
    def bind_host(self) -> str:
        return "0.0.0.0" if self.public else self.host


@dataclass
class DocServeConfig:
    """Represents the settings defined in .docserve.yml."""

    root: Path
    build: BuildConfig = field(default_factory=BuildConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    serve: ServeConfig = field(default_factory=ServeConfig)


def load_config(config_path: Path) -> DocServeConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    if not config_file.exists():
        return DocServeConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    build_data = _as_dict(data.get("build"))
    build = BuildConfig(
        preset=_as_str(build_data.get("preset")),
        command=_as_command(build_data.get("command")),
        output_dir=_as_str(build_data.get("output_dir")),
        cwd=_as_str(build_data.get("cwd")),
    )

    watch_data = _as_dict(data.get("watch"))
    watch = WatchConfig()
    if watch_data:
        enabled = _as_bool(watch_data.get("enabled"))
        if enabled is not None:
            watch.enabled = enabled
        quiet = _as_int(watch_data.get("quiet_period_ms"))
        if quiet is not None:
            if quiet < 0:
                raise ConfigError("watch.quiet_period_ms must not be negative")
            watch.quiet_period_ms = quiet
        watch.exclude = _as_str_list(watch_data.get("exclude"))
        watch.extra = _as_str_list(watch_data.get("extra"))

    serve_data = _as_dict(data.get("serve"))
    serve = ServeConfig()
    if serve_data:
        serve.host = _as_str(serve_data.get("host")) or serve.host
        port = _as_int(serve_data.get("port"))
        if port is not None:
            if not 0 <= port <= 65535:
                raise ConfigError(f"serve.port out of range: {port}")
            serve.port = port
        serve.index = _as_str(serve_data.get("index"))
        serve.public = _as_bool(serve_data.get("public")) or False

    return DocServeConfig(root=root, build=build, watch=watch, serve=serve)


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


def _as_command(value: Any) -> List[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return _as_str_list(value)


__all__ = [
    "BuildConfig",
    "ConfigError",
    "DocServeConfig",
    "ServeConfig",
    "WatchConfig",
    "load_config",
]
