"""Change detection and debouncing for the watch loop."""

from .debounce import ChangeSource, Debouncer
from .detector import ChangeDetector
from .root import DEFAULT_EXCLUDES, WatchError, WatchRoot

__all__ = [
    "ChangeDetector",
    "ChangeSource",
    "DEFAULT_EXCLUDES",
    "Debouncer",
    "WatchError",
    "WatchRoot",
]
