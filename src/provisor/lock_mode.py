from __future__ import annotations

from enum import Enum


class LockMode(Enum):
    """Select locking behavior for shared container state.

    The descriptor table and the singleton cache are the only shared mutable
    state. ``THREAD`` guards class scanning and singleton creation so both
    happen at most once under concurrent first access.
    """

    THREAD = "thread"
    """Guard scanning and singleton creation with ``threading.RLock``."""

    NONE = "none"
    """Disable locking for single-threaded containers."""
