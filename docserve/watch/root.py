"""Watch root definition and path exclusion rules."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple


class WatchError(RuntimeError):
    """Raised when the watch root cannot be established or watching fails."""


DEFAULT_EXCLUDES: Tuple[str, ...] = (
    ".git/",
    ".hg/",
    ".svn/",
    ".venv/",
    "node_modules/",
    "__pycache__/",
    ".pytest_cache/",
    ".mypy_cache/",
    ".idea/",
    ".DS_Store",
    "*.swp",
    "*.swx",
    "*~",
    ".#*",
    "4913",
)


@dataclass(frozen=True)
class ExcludeRule:
    """A gitignore-flavoured glob excluding paths from the watch set."""

    pattern: str
    directory_only: bool
    anchored: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False

        if self.anchored or self.has_slash:
            if fnmatchcase(rel_path, self.pattern):
                return True
            if self.pattern.endswith("/**"):
                prefix = self.pattern[:-3]
                return rel_path == prefix or rel_path.startswith(f"{prefix}/")
            return False

        name = rel_path.rsplit("/", 1)[-1]
        return fnmatchcase(name, self.pattern)


def build_exclude_rule(pattern: str) -> Optional[ExcludeRule]:
    pattern = pattern.strip().replace("\\", "/")
    if not pattern or pattern.startswith("#"):
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern.rstrip("/")

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern.lstrip("/")

    if not pattern:
        return None
    return ExcludeRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        has_slash="/" in pattern,
    )


@dataclass(frozen=True)
class WatchRoot:
    """The directory tree being monitored, fixed for the process lifetime.

    ``excluded_dirs`` always contains the documentation output directory so a
    build never triggers itself.
    """

    path: Path
    exclusions: Tuple[str, ...] = ()
    excluded_dirs: Tuple[Path, ...] = ()
    extra: Tuple[Path, ...] = ()
    _rules: Tuple[ExcludeRule, ...] = field(default=(), repr=False, compare=False)

    @classmethod
    def establish(
        cls,
        path: str | Path,
        *,
        output_dir: str | Path,
        exclude: Iterable[str] = (),
        ignore_dirs: Iterable[str | Path] = (),
        extra: Iterable[str | Path] = (),
    ) -> "WatchRoot":
        """Validate ``path`` and build the immutable watch definition.

        Raises ``WatchError`` when the root or an extra path is missing or unreadable.
        """
        root = _require_readable(Path(path), "Watch root")
        if not root.is_dir():
            raise WatchError(f"Watch root is not a directory: {root}")
        extras = tuple(_require_readable(Path(item), "Extra watch path") for item in extra)

        excluded_dirs = [Path(output_dir).expanduser().resolve()]
        for item in ignore_dirs:
            resolved = Path(item).expanduser().resolve()
            if resolved not in excluded_dirs:
                excluded_dirs.append(resolved)

        patterns = tuple(dict.fromkeys([*DEFAULT_EXCLUDES, *exclude]))
        rules = tuple(rule for rule in (build_exclude_rule(p) for p in patterns) if rule)
        return cls(
            path=root,
            exclusions=patterns,
            excluded_dirs=tuple(excluded_dirs),
            extra=extras,
            _rules=rules,
        )

    def roots(self) -> Tuple[Path, ...]:
        """Return every directory tree (or single file) that must be watched."""
        return (self.path, *self.extra)

    def is_excluded(self, path: str | Path, *, is_dir: bool = False) -> bool:
        """Return True when events for ``path`` must be ignored."""
        target = Path(os.path.abspath(path))
        for excluded in self.excluded_dirs:
            if target == excluded or excluded in target.parents:
                return True

        rel_path = self._relative(target)
        if rel_path is None:
            return False
        return _matches_any(rel_path, is_dir, self._rules)

    def _relative(self, target: Path) -> Optional[str]:
        for base in self.roots():
            if target == base:
                return ""
            try:
                return target.relative_to(base).as_posix()
            except ValueError:
                continue
        return None


def _matches_any(rel_path: str, is_dir: bool, rules: Sequence[ExcludeRule]) -> bool:
    if not rel_path:
        return False
    parts = rel_path.split("/")
    # Every ancestor is a directory; only the leaf uses the event's own flag.
    for depth in range(1, len(parts) + 1):
        candidate = "/".join(parts[:depth])
        candidate_is_dir = is_dir if depth == len(parts) else True
        if any(rule.matches(candidate, candidate_is_dir) for rule in rules):
            return True
    return False


def _require_readable(path: Path, label: str) -> Path:
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        raise WatchError(f"{label} does not exist: {resolved}")
    if resolved.is_dir():
        if not os.access(resolved, os.R_OK | os.X_OK):
            raise WatchError(f"{label} is not readable: {resolved}")
    elif not os.access(resolved, os.R_OK):
        raise WatchError(f"{label} is not readable: {resolved}")
    return resolved


__all__ = ["DEFAULT_EXCLUDES", "ExcludeRule", "WatchError", "WatchRoot", "build_exclude_rule"]
