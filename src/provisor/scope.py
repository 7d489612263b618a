from __future__ import annotations

from enum import Enum


class Scope(Enum):
    """Select how long a produced service instance lives.

    Class services use ``Container(default_scope=...)`` unless decorated with
    ``@singleton`` or ``@per_lookup``. Provided members follow the rules
    described on ``Provides``.
    """

    SINGLETON = "singleton"
    """Create once on first lookup and cache until container shutdown."""

    PER_LOOKUP = "per_lookup"
    """Create a fresh instance for every lookup.

    The caller owns the instance. Teardown hooks run only when the instance is
    obtained through a ``ServiceHandle`` and the handle is closed.
    """
