from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, TypeVar, Union, get_args, get_origin

from provisor.scope import Scope

T = TypeVar("T")
C = TypeVar("C", bound=type)

PROVIDES_ATTR = "__provisor_provides__"
CONTRACT_ATTR = "__provisor_contract__"
CONTRACTS_PROVIDED_ATTR = "__provisor_contracts_provided__"
SCOPE_ATTR = "__provisor_scope__"
REGISTERS_ATTR = "__provisor_registers__"
PROVIDES_MEMBERS_ATTR = "__provisor_provides_members__"
MESSAGE_RECEIVER_ATTR = "__provisor_message_receiver__"


class Destroyer(Enum):
    """Select which object runs a ``Provides.destroy_method``."""

    PROVIDED_INSTANCE = "provided_instance"
    """Call ``value.<destroy_method>()`` on the produced value."""

    PROVIDER = "provider"
    """Call ``<destroy_method>(value)`` on the class or instance that produced it."""


@dataclass(frozen=True, slots=True)
class Provides:
    """Mark a field or method as a producer of a service.

    Methods are decorated with an instance, fields carry it as
    ``typing.Annotated`` metadata. ``ClassVar`` fields and ``staticmethod``/
    ``classmethod`` providers are static: they are read from the class and
    never bind the class type parameters. Other members are read from the
    owning service instance.

    Scope is chosen in this order: nullable (``T | None``) members are always
    per-lookup, then an explicit ``scope``, then a scope declared on one of the
    provided contract classes, then the owner's scope for instance members,
    then per-lookup.

    Args:
        contracts: Explicit contract list. Replaces the default contracts
            (the produced type and every ``@contract`` supertype).
        scope: Explicit scope of the produced value.
        destroy_method: Name of the method that tears the value down.
        destroyed_by: Whether ``destroy_method`` runs on the produced value or
            on the producing class or instance.

    Examples:
        .. code-block:: python

            class Factories:
                settings: ClassVar[Annotated[Settings, Provides()]] = Settings()

                @staticmethod
                @Provides(scope=Scope.SINGLETON, destroy_method="close")
                def engine(settings: Settings) -> Engine:
                    return Engine(settings.dsn)

    """

    contracts: tuple[Any, ...] = ()
    scope: Scope | None = None
    destroy_method: str | None = None
    destroyed_by: Destroyer = Destroyer.PROVIDED_INSTANCE

    def __post_init__(self) -> None:
        if not isinstance(self.contracts, tuple):
            object.__setattr__(self, "contracts", tuple(self.contracts))

    def __call__(self, target: T) -> T:
        function = target.__func__ if isinstance(target, (staticmethod, classmethod)) else target
        setattr(function, PROVIDES_ATTR, self)
        return target


@dataclass(frozen=True, slots=True)
class MessageReceiver:
    """Class metadata stored by ``@message_receiver``."""

    permitted_types: tuple[type[Any], ...] = field(default=())


def contract(cls: C) -> C:
    """Mark a class as a contract.

    Services register under every contract supertype of their implementation.
    """
    setattr(cls, CONTRACT_ATTR, True)
    return cls


def contracts_provided(*contracts: Any) -> Callable[[C], C]:
    """Replace the default contract set of a class service with ``contracts``."""

    def decorator(cls: C) -> C:
        setattr(cls, CONTRACTS_PROVIDED_ATTR, tuple(contracts))
        return cls

    return decorator


def singleton(cls: C) -> C:
    """Declare a class as singleton-scoped."""
    setattr(cls, SCOPE_ATTR, Scope.SINGLETON)
    return cls


def per_lookup(cls: C) -> C:
    """Declare a class as per-lookup-scoped."""
    setattr(cls, SCOPE_ATTR, Scope.PER_LOOKUP)
    return cls


def registers(*classes: type[Any]) -> Callable[[C], C]:
    """Register ``classes`` whenever the decorated class is registered."""

    def decorator(cls: C) -> C:
        setattr(cls, REGISTERS_ATTR, tuple(classes))
        return cls

    return decorator


def provides_members(*names: str) -> Callable[[C], C]:
    """Expose enum constants as individual singleton services.

    With no names every constant is exposed. Each constant is fetchable under
    the enum type and the enum's contracts.

    Examples:
        .. code-block:: python

            @provides_members()
            class Color(Enum):
                RED = "red"
                GREEN = "green"


            container.register(Color)
            assert set(container.resolve_all(Color)) == {Color.RED, Color.GREEN}

    """

    def decorator(cls: C) -> C:
        if not issubclass(cls, Enum):
            msg = f"@provides_members can only decorate Enum subclasses, got {cls!r}."
            raise TypeError(msg)
        setattr(cls, PROVIDES_MEMBERS_ATTR, tuple(names))
        return cls

    return decorator


def message_receiver(*permitted_types: type[Any]) -> Callable[[C], C]:
    """Mark a class whose ``SubscribeTo`` methods receive published messages.

    When ``permitted_types`` is not empty, a message reaches the class's
    subscribers only if it is an instance of one of them.
    """

    def decorator(cls: C) -> C:
        setattr(cls, MESSAGE_RECEIVER_ATTR, MessageReceiver(permitted_types=tuple(permitted_types)))
        return cls

    return decorator


class InjectedMarker:
    """Indicate a parameter should be injected from the container."""


class SubscribeToMarker:
    """Indicate the parameter that receives published messages."""


if TYPE_CHECKING:
    Injected = Union[T, T]  # noqa: UP007,PYI016
    """Mark a parameter for container-driven injection.

    At runtime ``Injected[T]`` becomes ``Annotated[T, InjectedMarker()]``.
    """

    SubscribeTo = Union[T, T]  # noqa: UP007,PYI016
    """Mark the message parameter of a subscriber method.

    At runtime ``SubscribeTo[T]`` becomes ``Annotated[T, SubscribeToMarker()]``.
    """

else:

    class Injected:
        """Mark a parameter for container-driven injection.

        At runtime ``Injected[T]`` resolves to ``Annotated[T, InjectedMarker()]``.

        Examples:
            .. code-block:: python

                @container.inject
                def run(service: Injected[Service], value: int) -> str:
                    return service.handle(value)

        """

        def __class_getitem__(cls, item: T) -> Annotated[T, InjectedMarker]:
            return _append_marker(item, InjectedMarker())

    class SubscribeTo:
        """Mark the message parameter of a subscriber method.

        At runtime ``SubscribeTo[T]`` resolves to ``Annotated[T, SubscribeToMarker()]``.

        Examples:
            .. code-block:: python

                @message_receiver()
                class Audit:
                    def on_event(self, event: SubscribeTo[Event], log: Logbook) -> None:
                        log.write(event)

        """

        def __class_getitem__(cls, item: T) -> Annotated[T, SubscribeToMarker]:
            return _append_marker(item, SubscribeToMarker())


def _append_marker(item: Any, marker: object) -> Any:
    if get_origin(item) is Annotated:
        args = get_args(item)
        return Annotated[(args[0], *args[1:], marker)]
    return Annotated[(item, marker)]


def provides_of(member: object) -> Provides | None:
    """Return the ``Provides`` metadata of a method, staticmethod or classmethod."""
    function = member.__func__ if isinstance(member, (staticmethod, classmethod)) else member
    metadata = getattr(function, PROVIDES_ATTR, None)
    return metadata if isinstance(metadata, Provides) else None


def own_class_metadata(cls: type[Any], attribute: str, default: Any = None) -> Any:
    """Return class metadata declared on ``cls`` itself, ignoring base classes."""
    return cls.__dict__.get(attribute, default)


def has_marker(annotation: Any, marker_type: type[Any]) -> bool:
    """Return True when annotation is ``Annotated[..., marker_type()]``."""
    if get_origin(annotation) is not Annotated:
        return False
    return any(isinstance(item, marker_type) for item in get_args(annotation)[1:])


def strip_marker(annotation: Any, marker_type: type[Any]) -> Any:
    """Strip ``marker_type`` metadata while preserving other Annotated metadata."""
    if not has_marker(annotation, marker_type):
        return annotation
    args = get_args(annotation)
    metadata = tuple(item for item in args[1:] if not isinstance(item, marker_type))
    if not metadata:
        return args[0]
    return Annotated[(args[0], *metadata)]


def iter_metadata(annotation: Any) -> Iterable[Any]:
    """Yield Annotated metadata items, or nothing for plain annotations."""
    if get_origin(annotation) is Annotated:
        yield from get_args(annotation)[1:]
