"""Documentation builder presets and build plan resolution."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from .config import ConfigError, DocServeConfig
from .logging import get_logger
from .models import BuildInvocation

logger = get_logger("presets")


@dataclass(frozen=True)
class BuildPlan:
    """Everything needed to run the builder and serve its output."""

    preset: Optional[str]
    invocation: BuildInvocation
    output_dir: Path
    index: str
    ignore_dirs: Tuple[Path, ...] = ()


@dataclass(frozen=True)
class _PresetDefaults:
    command: Tuple[str, ...]
    output_dir: Path
    index: str
    # Directories the builder writes besides its output (caches, intermediates).
    ignore_dirs: Tuple[Path, ...] = ()


def _cargo_defaults(root: Path, manifest_path: Optional[Path]) -> _PresetDefaults:
    manifest = manifest_path or root / "Cargo.toml"
    command: Tuple[str, ...] = ("cargo", "doc")
    if manifest_path is not None:
        command += ("--manifest-path", str(manifest_path))
    target_env = os.environ.get("CARGO_TARGET_DIR")
    target = Path(target_env) if target_env else manifest.parent / "target"
    if not target.is_absolute():
        target = root / target
    crate = _cargo_crate_name(manifest)
    index = f"/{crate}/index.html" if crate else "/index.html"
    return _PresetDefaults(
        command=command, output_dir=target / "doc", index=index, ignore_dirs=(target,)
    )


def _sphinx_defaults(root: Path, manifest_path: Optional[Path]) -> _PresetDefaults:
    source = "docs" if (root / "docs" / "conf.py").exists() else "."
    build_dir = Path(source) / "_build" / "html"
    return _PresetDefaults(
        command=("sphinx-build", "-b", "html", source, build_dir.as_posix()),
        output_dir=root / build_dir,
        index="/index.html",
        ignore_dirs=(root / source / "_build",),
    )


def _mkdocs_defaults(root: Path, manifest_path: Optional[Path]) -> _PresetDefaults:
    return _PresetDefaults(
        command=("mkdocs", "build", "--site-dir", "site"),
        output_dir=root / "site",
        index="/index.html",
    )


def _pdoc_defaults(root: Path, manifest_path: Optional[Path]) -> _PresetDefaults:
    # Module names are supplied as trailing builder arguments.
    return _PresetDefaults(
        command=("pdoc", "--output-directory", "build/pdoc"),
        output_dir=root / "build" / "pdoc",
        index="/index.html",
    )


PRESETS: Dict[str, Callable[[Path, Optional[Path]], _PresetDefaults]] = {
    "cargo": _cargo_defaults,
    "sphinx": _sphinx_defaults,
    "mkdocs": _mkdocs_defaults,
    "pdoc": _pdoc_defaults,
}

_MARKERS: Sequence[Tuple[str, str]] = (
    ("Cargo.toml", "cargo"),
    ("docs/conf.py", "sphinx"),
    ("conf.py", "sphinx"),
    ("mkdocs.yml", "mkdocs"),
)


def detect_preset(root: Path) -> Optional[str]:
    """Return the preset suggested by marker files in ``root``."""
    for marker, preset in _MARKERS:
        if (root / marker).exists():
            return preset
    return None


def resolve_build_plan(
    config: DocServeConfig,
    *,
    preset: str | None = None,
    command: Sequence[str] | None = None,
    output_dir: str | None = None,
    index: str | None = None,
    manifest_path: str | None = None,
    extra_args: Sequence[str] = (),
) -> BuildPlan:
    """Combine CLI overrides, config file values and preset defaults."""
    root = config.root
    manifest = Path(manifest_path).expanduser().resolve() if manifest_path else None

    chosen_command = list(command or config.build.command)
    preset_name = preset or config.build.preset
    if preset_name is None and not chosen_command:
        preset_name = "cargo" if manifest is not None else detect_preset(root)
        if preset_name is not None:
            logger.debug("Detected %s project in %s", preset_name, root)

    defaults: Optional[_PresetDefaults] = None
    if preset_name is not None:
        factory = PRESETS.get(preset_name)
        if factory is None:
            known = ", ".join(sorted(PRESETS))
            raise ConfigError(f"Unknown builder preset '{preset_name}' (expected one of: {known})")
        defaults = factory(root, manifest)

    if not chosen_command:
        if defaults is None:
            raise ConfigError(
                f"Could not detect a documentation builder in {root}. "
                "Pass --preset or --command, or configure build.command in .docserve.yml."
            )
        chosen_command = list(defaults.command)
    chosen_command.extend(extra_args)

    output = output_dir or config.build.output_dir
    if output is not None:
        resolved_output = _resolve_under(root, output)
    elif defaults is not None:
        resolved_output = defaults.output_dir
    else:
        raise ConfigError("A custom build command needs --output-dir or build.output_dir")

    chosen_index = index or config.serve.index or (defaults.index if defaults else "/index.html")
    if not chosen_index.startswith("/"):
        chosen_index = f"/{chosen_index}"

    cwd = _resolve_under(root, config.build.cwd) if config.build.cwd else root
    invocation = BuildInvocation(command=tuple(chosen_command), cwd=str(cwd))
    return BuildPlan(
        preset=preset_name,
        invocation=invocation,
        output_dir=resolved_output,
        index=chosen_index,
        ignore_dirs=defaults.ignore_dirs if defaults is not None else (),
    )


def _resolve_under(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _cargo_crate_name(manifest: Path) -> Optional[str]:
    data = _read_toml(manifest)
    package = data.get("package")
    if isinstance(package, dict) and isinstance(package.get("name"), str):
        return package["name"].replace("-", "_")
    workspace = data.get("workspace")
    if isinstance(workspace, dict):
        members = workspace.get("members")
        if isinstance(members, list):
            for member in members:
                if not isinstance(member, str) or any(ch in member for ch in "*?["):
                    continue
                name = _cargo_crate_name(manifest.parent / member / "Cargo.toml")
                if name:
                    return name
    return None


def _read_toml(path: Path) -> Dict[str, object]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return {}
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return {}


__all__ = ["BuildPlan", "PRESETS", "detect_preset", "resolve_build_plan"]
