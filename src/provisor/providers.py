from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from provisor._internal.lifecycle import ServiceHandle
    from provisor._internal.type_keys import ServiceKey
    from provisor.container import Container

T = TypeVar("T")


class Provider(Generic[T]):
    """Lazily resolve one service on demand.

    Request ``Provider[T]`` instead of ``T`` to defer construction or to
    tolerate absence: ``get()`` returns ``None`` when nothing is registered or
    when the chosen producer yields ``None``.

    Each call of ``get()`` performs a fresh lookup, so per-lookup services
    yield a new instance every time. Use ``handle()`` when the instance must be
    torn down explicitly.
    """

    def __init__(self, container: Container, key: ServiceKey) -> None:
        self._container = container
        self._key = key

    @property
    def key(self) -> ServiceKey:
        return self._key

    def get(self) -> T | None:
        handle = self.handle()
        if handle is None:
            return None
        return handle.get()

    def handle(self) -> ServiceHandle[T] | None:
        return self._container.get_handle(self._key)

    def __repr__(self) -> str:
        return f"Provider[{self._key}]"


class IterableProvider(Generic[T]):
    """Lazily resolve every service registered under a key.

    Iteration produces one value per matching descriptor in registration
    order, ``None`` values included. Missing contracts produce an empty
    iteration, never an error.
    """

    def __init__(self, container: Container, key: ServiceKey) -> None:
        self._container = container
        self._key = key

    @property
    def key(self) -> ServiceKey:
        return self._key

    def handles(self) -> list[ServiceHandle[T]]:
        return self._container.get_all_handles(self._key)

    def __iter__(self) -> Iterator[T | None]:
        for handle in self.handles():
            yield handle.get()

    def __len__(self) -> int:
        return len(self.handles())

    def __repr__(self) -> str:
        return f"IterableProvider[{self._key}]"
