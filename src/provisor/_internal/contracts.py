from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, get_origin

from provisor._internal.type_keys import (
    ServiceKey,
    class_bindings,
    contains_typevar,
    rebuild_alias,
    strip_annotated,
    substitute_typevars,
)
from provisor.markers import CONTRACT_ATTR, CONTRACTS_PROVIDED_ATTR, SCOPE_ATTR, own_class_metadata
from provisor.scope import Scope

logger = logging.getLogger(__name__)


def is_contract(cls: Any) -> bool:
    return isinstance(cls, type) and bool(own_class_metadata(cls, CONTRACT_ATTR, False))


def declared_scope(cls: Any) -> Scope | None:
    """Return the scope declared on ``cls`` with ``@singleton``/``@per_lookup``."""
    if not isinstance(cls, type):
        return None
    return own_class_metadata(cls, SCOPE_ATTR)


def default_contracts(key: ServiceKey) -> tuple[ServiceKey, ...]:
    """Compute the contracts a service of type ``key`` registers under.

    The result is ``key`` itself followed by every ``@contract`` supertype in
    MRO order. Generic contracts are keyed by their resolved arguments
    (``Repo[User]``, never ``Repo``); a contract whose arguments cannot be
    resolved from ``key`` falls back to its raw key.
    """
    contracts = [key]
    raw = key.raw
    if not isinstance(raw, type):
        return tuple(contracts)

    bindings = class_bindings(key)
    for cls in raw.__mro__[1:]:
        if not is_contract(cls):
            continue
        contract_key = _contract_key(cls, bindings.get(cls, {}))
        if contract_key not in contracts:
            contracts.append(contract_key)
    return tuple(contracts)


def explicit_contracts(
    declared: Iterable[Any],
    *,
    bindings: dict[Any, Any],
) -> tuple[ServiceKey, ...]:
    """Key an explicit contract list, resolving type parameters from ``bindings``."""
    contracts: list[ServiceKey] = []
    for annotation in declared:
        resolved = substitute_typevars(strip_annotated(annotation), mapping=bindings)
        if contains_typevar(resolved):
            logger.debug("Contract %r is not fully bound, registering its raw type", annotation)
            contract_key = ServiceKey.of(get_origin(resolved) or resolved)
        else:
            contract_key = ServiceKey.of(resolved)
        if contract_key not in contracts:
            contracts.append(contract_key)
    return tuple(contracts)


def class_contracts(key: ServiceKey) -> tuple[ServiceKey, ...]:
    """Contracts of a class service: ``@contracts_provided`` when present, defaults otherwise."""
    raw = key.raw
    declared = own_class_metadata(raw, CONTRACTS_PROVIDED_ATTR) if isinstance(raw, type) else None
    if declared is None:
        return default_contracts(key)
    return explicit_contracts(declared, bindings=class_bindings(key).get(raw, {}))


def contract_scope(contracts: Iterable[ServiceKey]) -> Scope | None:
    """Return the first scope declared on one of the contract classes."""
    for contract_key in contracts:
        scope = declared_scope(contract_key.raw)
        if scope is not None:
            return scope
    return None


def _contract_key(cls: type[Any], bindings: dict[Any, Any]) -> ServiceKey:
    parameters = getattr(cls, "__parameters__", ())
    if not parameters:
        return ServiceKey(cls)
    arguments = tuple(bindings.get(parameter, parameter) for parameter in parameters)
    if contains_typevar(arguments):
        return ServiceKey(cls)
    return ServiceKey.of(rebuild_alias(origin=cls, args=arguments, fallback=cls))
