from __future__ import annotations

import functools
import importlib
import logging
from typing import Any

from provisor._internal.type_checks import is_runtime_class

logger = logging.getLogger(__name__)

SETTINGS_MODULE = "pydantic_settings"


@functools.lru_cache(maxsize=None)
def settings_base() -> type[Any] | None:
    """Return ``pydantic_settings.BaseSettings``, or ``None`` when it is not installed."""
    try:
        module = importlib.import_module(SETTINGS_MODULE)
    except ImportError:
        logger.debug("%s is not installed, settings classes register as plain classes", SETTINGS_MODULE)
        return None
    base = getattr(module, "BaseSettings", None)
    return base if isinstance(base, type) else None


def is_pydantic_settings_subclass(candidate: object) -> bool:
    """Return whether a class is a Pydantic settings model.

    Registered settings classes are built through a zero-argument call, so
    their values come from the environment, and are cached as singletons
    unless the class declares a scope itself.

    Args:
        candidate: Object to test.

    Returns:
        ``True`` when ``candidate`` is a strict subclass of
        ``pydantic_settings.BaseSettings``; ``False`` otherwise, including when
        the package is not installed.

    """
    base = settings_base()
    if base is None or not is_runtime_class(candidate) or candidate is base:
        return False
    return issubclass(candidate, base)


__all__ = ["SETTINGS_MODULE", "is_pydantic_settings_subclass", "settings_base"]
