from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from provisor._internal.injection import ParameterSpec, bind_arguments
from provisor._internal.type_keys import ServiceKey
from provisor.markers import Destroyer
from provisor.scope import Scope


class ProducerKind(Enum):
    """How a descriptor produces its value."""

    CONSTRUCTOR = "constructor"
    """Call the registered class with resolved constructor arguments."""

    STATIC_FIELD = "static_field"
    """Read a ``ClassVar`` provider field from the declaring class."""

    INSTANCE_FIELD = "instance_field"
    """Read a provider field from the owning service instance."""

    STATIC_METHOD = "static_method"
    """Call a ``staticmethod``/``classmethod`` provider."""

    INSTANCE_METHOD = "instance_method"
    """Call a provider method on the owning service instance."""

    ENUM_CONSTANT = "enum_constant"
    """Return one constant of a ``@provides_members`` enum."""

    CONSTANT = "constant"
    """Return a value added with ``Container.add_instance``."""


INSTANCE_KINDS = frozenset({ProducerKind.INSTANCE_FIELD, ProducerKind.INSTANCE_METHOD})
FIELD_KINDS = frozenset(
    {ProducerKind.STATIC_FIELD, ProducerKind.INSTANCE_FIELD, ProducerKind.ENUM_CONSTANT},
)
METHOD_KINDS = frozenset({ProducerKind.STATIC_METHOD, ProducerKind.INSTANCE_METHOD})


@dataclass(frozen=True, slots=True)
class DestroyDirective:
    """Custom teardown of a produced value.

    ``parameters`` are the extra arguments of a ``Destroyer.PROVIDER`` method
    after the one receiving the produced value.
    """

    method: str
    invoked_on: Destroyer = Destroyer.PROVIDED_INSTANCE
    parameters: tuple[ParameterSpec, ...] = ()


@dataclass(frozen=True, slots=True, eq=False)
class Producer:
    """Uniform producer of a descriptor value.

    Instance kinds need the owner's current instance, method kinds and the
    constructor need their resolved arguments; every kind is invoked through
    ``produce``.
    """

    kind: ProducerKind
    owner: type[Any] | None
    member: str | None = None
    parameters: tuple[ParameterSpec, ...] = ()
    owner_descriptor: ServiceDescriptor | None = None
    is_generator: bool = False
    value: Any = None

    @property
    def needs_owner(self) -> bool:
        return self.kind in INSTANCE_KINDS

    def produce(self, owner_instance: Any, arguments: Mapping[str, Any]) -> Any:
        kind = self.kind
        if kind is ProducerKind.CONSTANT:
            return self.value
        if kind is ProducerKind.ENUM_CONSTANT:
            return self.owner[self.member]  # type: ignore[index]
        if kind is ProducerKind.STATIC_FIELD:
            return getattr(self.owner, self.member)  # type: ignore[arg-type]
        if kind is ProducerKind.INSTANCE_FIELD:
            return getattr(owner_instance, self.member)  # type: ignore[arg-type]

        args, kwargs = bind_arguments(self.parameters, arguments)
        if kind is ProducerKind.CONSTRUCTOR:
            return self.owner(*args, **kwargs)  # type: ignore[misc]
        if kind is ProducerKind.STATIC_METHOD:
            return getattr(self.owner, self.member)(*args, **kwargs)  # type: ignore[arg-type]
        return getattr(owner_instance, self.member)(*args, **kwargs)  # type: ignore[arg-type]

    @property
    def identity(self) -> tuple[Any, ...]:
        if self.kind is ProducerKind.CONSTANT:
            return (self.kind, id(self.value))
        if self.owner_descriptor is not None:
            return (self.kind, self.owner_descriptor.identity, self.member)
        return (self.kind, self.owner, self.member)

    def __str__(self) -> str:
        owner = getattr(self.owner, "__qualname__", repr(self.owner))
        if self.member is None:
            return owner
        return f"{owner}.{self.member}"


@dataclass(frozen=True, slots=True, eq=False)
class ServiceDescriptor:
    """Immutable metadata describing how to produce one service.

    Args:
        key: Produced type.
        contracts: Keys the service is fetchable under. Explicit contract lists
            replace the default set.
        scope: Lifetime of produced values.
        producer: How the value is produced.
        nullable: Whether the producer may yield ``None``.
        destroy: Custom teardown replacing the default ``pre_destroy`` convention.

    """

    key: ServiceKey
    contracts: tuple[ServiceKey, ...]
    scope: Scope
    producer: Producer
    nullable: bool = False
    destroy: DestroyDirective | None = None
    identity: tuple[Any, ...] = field(init=False)

    def __post_init__(self) -> None:
        identity = self.producer.identity
        if self.producer.kind is ProducerKind.CONSTRUCTOR:
            identity = (*identity, self.key)
        object.__setattr__(self, "identity", identity)

    def same_registration(self, other: ServiceDescriptor) -> bool:
        return (
            self.key == other.key
            and self.contracts == other.contracts
            and self.scope is other.scope
            and self.nullable == other.nullable
            and self.destroy == other.destroy
        )

    def __str__(self) -> str:
        return f"{self.key} <- {self.producer} ({self.scope.value})"
