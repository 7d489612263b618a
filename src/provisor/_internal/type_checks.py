from __future__ import annotations

import inspect
import types
from typing import Any, TypeGuard

_UNSCANNED_MODULES = frozenset(
    {"abc", "builtins", "collections", "collections.abc", "enum", "types", "typing", "typing_extensions"},
)


def is_runtime_class(candidate: object) -> TypeGuard[type[Any]]:
    """Return true when candidate is a runtime class safe for class-only operations.

    Args:
        candidate: Value being checked for eligibility or runtime type constraints.

    """
    return isinstance(candidate, type) and not isinstance(candidate, types.GenericAlias)


def is_scannable_class(candidate: object) -> TypeGuard[type[Any]]:
    """Return true when provider members of candidate should be scanned.

    Standard library containers and typing constructs never declare providers.
    """
    return is_runtime_class(candidate) and candidate.__module__ not in _UNSCANNED_MODULES


def is_protocol_class(candidate: type[Any]) -> bool:
    return bool(getattr(candidate, "_is_protocol", False))


def is_abstract_class(candidate: type[Any]) -> bool:
    return inspect.isabstract(candidate) or is_protocol_class(candidate)


__all__ = ["is_abstract_class", "is_protocol_class", "is_runtime_class", "is_scannable_class"]
