from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from provisor._internal.descriptors import ServiceDescriptor
from provisor._internal.type_keys import ServiceKey
from provisor.exceptions import DuplicateRegistrationError

logger = logging.getLogger(__name__)


class DescriptorRegistry:
    """Descriptor table indexed by contract.

    Descriptors are kept in registration order; lookups return them in that
    order. Writers are serialized by the container lock, readers work on
    copied lists.
    """

    def __init__(self) -> None:
        self._by_identity: dict[tuple[Any, ...], ServiceDescriptor] = {}
        self._by_raw: dict[Any, list[tuple[ServiceKey, ServiceDescriptor]]] = {}
        self._ordered: list[ServiceDescriptor] = []

    def add(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        """Add ``descriptor`` and return the registered descriptor.

        Returns the already registered descriptor when an identical one exists.

        Raises:
            DuplicateRegistrationError: If the same producer is already
                registered with different metadata.

        """
        existing = self._by_identity.get(descriptor.identity)
        if existing is not None:
            if existing.same_registration(descriptor):
                return existing
            msg = (
                f"Producer {descriptor.producer} is already registered as {existing}; "
                f"cannot register it again as {descriptor}."
            )
            raise DuplicateRegistrationError(msg)

        self._by_identity[descriptor.identity] = descriptor
        self._ordered.append(descriptor)
        for contract in descriptor.contracts:
            self._by_raw.setdefault(contract.raw, []).append((contract, descriptor))
        logger.debug(
            "Registered %s under %s",
            descriptor,
            ", ".join(str(contract) for contract in descriptor.contracts),
        )
        return descriptor

    def find(self, key: ServiceKey) -> list[ServiceDescriptor]:
        """Return every descriptor advertising a contract that satisfies ``key``."""
        found: list[ServiceDescriptor] = []
        for contract, descriptor in list(self._by_raw.get(key.raw, ())):
            if contract.matches(key) and descriptor not in found:
                found.append(descriptor)
        return found

    def contains(self, descriptor: ServiceDescriptor) -> bool:
        return descriptor.identity in self._by_identity

    def truncate(self, size: int) -> None:
        """Drop every descriptor added after the first ``size`` ones."""
        removed = self._ordered[size:]
        del self._ordered[size:]
        for descriptor in removed:
            del self._by_identity[descriptor.identity]
            for contract in descriptor.contracts:
                entries = [entry for entry in self._by_raw[contract.raw] if entry[1] is not descriptor]
                if entries:
                    self._by_raw[contract.raw] = entries
                else:
                    del self._by_raw[contract.raw]
        if removed:
            logger.debug("Rolled back %d descriptor(s)", len(removed))

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(list(self._ordered))

    def __len__(self) -> int:
        return len(self._ordered)
