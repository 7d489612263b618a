from __future__ import annotations

import types
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, TypeVar, Union, get_args, get_origin

from provisor.exceptions import UnresolvableTypeError
from provisor.markers import InjectedMarker, SubscribeToMarker, strip_marker
from provisor.providers import IterableProvider, Provider
from provisor.topics import Topic

ITERABLE_ORIGINS: frozenset[Any] = frozenset({Iterable, Collection, Sequence, list})
UNION_ORIGINS: frozenset[Any] = frozenset({Union, types.UnionType})

TypeBindings = Mapping[Any, Any]


@dataclass(frozen=True, slots=True)
class ServiceKey:
    """Comparable lookup key: a raw type plus its concrete type arguments.

    Equality ignores the source annotation, so ``list[int]`` and
    ``typing.List[int]`` produce equal keys.
    """

    raw: Any
    args: tuple[ServiceKey, ...] = ()
    annotation: Any = field(default=None, compare=False, hash=False, repr=False)

    @classmethod
    def of(cls, annotation: Any) -> ServiceKey:
        """Build a key from a type expression.

        Raises:
            UnresolvableTypeError: If the expression contains a ``TypeVar``.

        """
        annotation = strip_annotated(annotation)
        if isinstance(annotation, TypeVar):
            raise UnresolvableTypeError(annotation)
        if isinstance(annotation, list):
            return cls(raw=list, args=tuple(cls.of(item) for item in annotation), annotation=annotation)
        origin = get_origin(annotation)
        if origin is None:
            return cls(raw=annotation, annotation=annotation)
        if origin in UNION_ORIGINS:
            origin = Union
        arguments = tuple(cls.of(argument) for argument in get_args(annotation))
        return cls(raw=origin, args=arguments, annotation=annotation)

    def to_annotation(self) -> Any:
        if self.annotation is not None:
            return self.annotation
        if not self.args:
            return self.raw
        return rebuild_alias(
            origin=self.raw,
            args=tuple(argument.to_annotation() for argument in self.args),
            fallback=self.raw,
        )

    def matches(self, requested: ServiceKey) -> bool:
        """Return whether this advertised key satisfies ``requested``."""
        if self.raw != requested.raw:
            return False
        if not requested.args:
            return True
        return self.args == requested.args

    def __str__(self) -> str:
        name = getattr(self.raw, "__qualname__", None) or repr(self.raw)
        if not self.args:
            return name
        return f"{name}[{', '.join(str(argument) for argument in self.args)}]"


class WrapperKind(Enum):
    """Shape of a requested dependency."""

    BARE = "bare"
    OPTIONAL = "optional"
    PROVIDER = "provider"
    ITERABLE = "iterable"
    ITERABLE_PROVIDER = "iterable_provider"
    TOPIC = "topic"


@dataclass(frozen=True, slots=True)
class Injectee:
    """A normalized dependency request: the lookup key and how to deliver it.

    For collection requests ``key`` is the element key and ``collection`` the
    key of the whole requested collection type.
    """

    key: ServiceKey
    wrapper: WrapperKind = WrapperKind.BARE
    collection: ServiceKey | None = None

    def __str__(self) -> str:
        if self.wrapper is WrapperKind.BARE:
            return str(self.key)
        return f"{self.wrapper.value}[{self.key}]"


def strip_annotated(annotation: Any) -> Any:
    """Strip ``Annotated`` metadata, ``Injected`` and ``SubscribeTo`` markers included."""
    annotation = strip_marker(annotation, InjectedMarker)
    annotation = strip_marker(annotation, SubscribeToMarker)
    if get_origin(annotation) is Annotated:
        return get_args(annotation)[0]
    return annotation


def contains_typevar(value: Any) -> bool:
    """Return whether a type expression still contains a ``TypeVar`` node.

    Bare generic classes such as ``Box`` are raw types, not open ones.
    """
    if isinstance(value, TypeVar):
        return True
    if isinstance(value, (list, tuple)):
        return any(contains_typevar(item) for item in value)
    if get_origin(value) is not None:
        return any(contains_typevar(argument) for argument in get_args(value))
    return False


def substitute_typevars(value: Any, *, mapping: TypeBindings) -> Any:
    """Substitute TypeVars in a type expression using a resolved mapping.

    Args:
        value: Type expression template that may contain TypeVars.
        mapping: Mapping from TypeVars to concrete type arguments.

    Returns:
        The substituted type expression with available TypeVars replaced.

    """
    if isinstance(value, TypeVar):
        return mapping.get(value, value)
    if isinstance(value, list):
        return [substitute_typevars(item, mapping=mapping) for item in value]

    origin = get_origin(value)
    if origin is None:
        return value

    arguments = get_args(value)
    if not arguments:
        return value

    substituted = tuple(substitute_typevars(argument, mapping=mapping) for argument in arguments)
    if origin is Annotated:
        return Annotated[substituted]
    return rebuild_alias(origin=origin, args=substituted, fallback=value)


def rebuild_alias(*, origin: Any, args: tuple[Any, ...], fallback: Any) -> Any:
    if origin in UNION_ORIGINS:
        return Union[args]  # noqa: UP007
    try:
        if len(args) == 1:
            return origin[args[0]]
        return origin[args]
    except TypeError:
        return fallback


def split_optional(annotation: Any) -> tuple[Any, bool]:
    """Return ``(inner, True)`` for ``T | None`` and ``(annotation, False)`` otherwise."""
    annotation = strip_annotated(annotation)
    if get_origin(annotation) not in UNION_ORIGINS:
        return annotation, False
    members = tuple(argument for argument in get_args(annotation) if argument is not type(None))
    if len(members) == len(get_args(annotation)):
        return annotation, False
    if len(members) == 1:
        return members[0], True
    return Union[members], True  # noqa: UP007


def class_bindings(key: ServiceKey) -> dict[type[Any], dict[Any, Any]]:
    """Map every class in the hierarchy of ``key.raw`` to its bound type parameters.

    Bindings of ``Box[str]`` map ``Box`` to ``{T: str}``; a base declared as
    ``Base[list[T]]`` maps ``Base`` to ``{U: list[str]}``. Parameters that the
    key does not bind are left out.
    """
    raw = key.raw
    result: dict[type[Any], dict[Any, Any]] = {}
    if not isinstance(raw, type):
        return result
    parameters = getattr(raw, "__parameters__", ())
    arguments = tuple(argument.to_annotation() for argument in key.args)
    mapping = {
        parameter: argument
        for parameter, argument in zip(parameters, arguments, strict=False)
        if not contains_typevar(argument)
    }
    _visit_bindings(raw, mapping, result)
    return result


def _visit_bindings(
    cls: type[Any],
    mapping: dict[Any, Any],
    result: dict[type[Any], dict[Any, Any]],
) -> None:
    if cls in result:
        return
    result[cls] = mapping
    for base in cls.__dict__.get("__orig_bases__", cls.__bases__):
        origin = get_origin(base) or base
        if not isinstance(origin, type) or origin is object:
            continue
        parameters = getattr(origin, "__parameters__", ())
        if not parameters:
            _visit_bindings(origin, {}, result)
            continue
        substituted = tuple(substitute_typevars(argument, mapping=mapping) for argument in get_args(base))
        _visit_bindings(
            origin,
            {
                parameter: argument
                for parameter, argument in zip(parameters, substituted, strict=False)
                if not contains_typevar(argument)
            },
            result,
        )


def declaring_class(cls: type[Any], name: str) -> type[Any] | None:
    """Return the most derived class in ``cls.__mro__`` that defines ``name``."""
    for klass in cls.__mro__:
        if name in klass.__dict__:
            return klass
    return None


def member_bindings(context: ServiceKey | None, declaring: type[Any] | None) -> dict[Any, Any]:
    """Resolve type parameters visible to a member of ``declaring``.

    The concrete ``context`` (for example the owner key or a collected test
    class) is consulted first; the declaring class itself is the fallback.
    """
    if declaring is None:
        return {}
    if context is not None:
        bindings = class_bindings(context)
        if declaring in bindings:
            return bindings[declaring]
    return class_bindings(ServiceKey(declaring)).get(declaring, {})


def merged_bindings(context: ServiceKey | None) -> dict[Any, Any]:
    """Merge the bindings of every class in the context hierarchy."""
    if context is None:
        return {}
    merged: dict[Any, Any] = {}
    for mapping in reversed(list(class_bindings(context).values())):
        merged.update(mapping)
    return merged


def resolve_injectee(annotation: Any, *, bindings: TypeBindings | None = None) -> Injectee:
    """Canonicalize a requested shape into an ``Injectee``.

    Recognized shapes are ``T``, ``T | None``, ``Provider[T]``,
    ``IterableProvider[T]``, ``Topic[T]`` and ``Iterable[T]`` (also
    ``Sequence[T]``, ``Collection[T]`` and ``list[T]``).

    Args:
        annotation: Requested type expression.
        bindings: TypeVar bindings of the call-site context.

    Raises:
        UnresolvableTypeError: If a type variable stays unbound.

    """
    annotation = substitute_typevars(strip_annotated(annotation), mapping=bindings or {})
    inner, nullable = split_optional(annotation)
    if nullable:
        return Injectee(key=_resolved_key(inner, annotation), wrapper=WrapperKind.OPTIONAL)

    origin = get_origin(annotation)
    arguments = get_args(annotation)
    if origin is not None and len(arguments) == 1:
        wrapper = _wrapper_of(origin)
        if wrapper is WrapperKind.ITERABLE:
            return Injectee(
                key=_resolved_key(arguments[0], annotation),
                wrapper=wrapper,
                collection=ServiceKey.of(annotation),
            )
        if wrapper is not None:
            return Injectee(key=_resolved_key(arguments[0], annotation), wrapper=wrapper)
    return Injectee(key=_resolved_key(annotation, annotation))


def _wrapper_of(origin: Any) -> WrapperKind | None:
    if origin is Provider:
        return WrapperKind.PROVIDER
    if origin is IterableProvider:
        return WrapperKind.ITERABLE_PROVIDER
    if origin is Topic:
        return WrapperKind.TOPIC
    if origin in ITERABLE_ORIGINS:
        return WrapperKind.ITERABLE
    return None


def _resolved_key(annotation: Any, requested: Any) -> ServiceKey:
    if contains_typevar(annotation):
        raise UnresolvableTypeError(requested)
    return ServiceKey.of(annotation)


__all__ = [
    "Injectee",
    "ServiceKey",
    "WrapperKind",
    "class_bindings",
    "contains_typevar",
    "declaring_class",
    "member_bindings",
    "merged_bindings",
    "resolve_injectee",
    "split_optional",
    "strip_annotated",
    "substitute_typevars",
]
