from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Generator, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, get_args, get_origin, get_type_hints

from provisor._internal.contracts import (
    class_contracts,
    contract_scope,
    declared_scope,
    default_contracts,
    explicit_contracts,
)
from provisor._internal.descriptors import (
    DestroyDirective,
    Producer,
    ProducerKind,
    ServiceDescriptor,
)
from provisor._internal.injection import ParameterSpec, parameter_specs, type_hints
from provisor._internal.integrations.pydantic_settings import is_pydantic_settings_subclass
from provisor._internal.registry import DescriptorRegistry
from provisor._internal.type_checks import is_abstract_class, is_scannable_class
from provisor._internal.type_keys import (
    ServiceKey,
    contains_typevar,
    declaring_class,
    member_bindings,
    split_optional,
    strip_annotated,
    substitute_typevars,
)
from provisor.exceptions import InvalidProviderSpecError, UnresolvableTypeError
from provisor.markers import (
    PROVIDES_MEMBERS_ATTR,
    REGISTERS_ATTR,
    Destroyer,
    Provides,
    iter_metadata,
    own_class_metadata,
    provides_of,
)
from provisor.scope import Scope

logger = logging.getLogger(__name__)

_GENERATOR_ORIGINS = frozenset({Iterator, Generator, Iterable})


@dataclass(frozen=True, slots=True)
class RegisteredClass:
    """A class accepted by ``ProvidesScanner.register``.

    ``descriptor`` is ``None`` for classes that are not fetchable themselves
    (utility, abstract and enum classes).
    """

    cls: type[Any]
    key: ServiceKey
    descriptor: ServiceDescriptor | None


@dataclass(frozen=True, slots=True)
class ProviderMember:
    """A field or method carrying ``Provides`` metadata."""

    name: str
    declaring: type[Any]
    provides: Provides
    is_static: bool
    annotation: Any = None
    function: Callable[..., Any] | None = None
    is_classmethod: bool = False

    @property
    def is_field(self) -> bool:
        return self.function is None

    @property
    def label(self) -> str:
        return f"{self.declaring.__qualname__}.{self.name}"


class ProvidesScanner:
    """Turn registered classes and their provider members into descriptors.

    Registering a class adds its constructor descriptor (unless the class is
    not fetchable) and then scans provider members transitively: every
    produced descriptor is scanned for further providers declared on its
    produced type, with generic arguments carried along. Static members are
    scanned once per declaring class, instance members once per owner
    descriptor.

    Callers serialize access; the container holds its lock around every call.
    """

    def __init__(self, registry: DescriptorRegistry, *, default_scope: Scope) -> None:
        self._registry = registry
        self._default_scope = default_scope
        self._registered_keys: set[ServiceKey] = set()
        self._static_scanned: set[type[Any]] = set()
        self._instance_scanned: set[tuple[Any, ...]] = set()
        self._members: dict[type[Any], tuple[ProviderMember, ...]] = {}

    def register(self, target: Any) -> list[RegisteredClass]:
        """Register a class (or parameterized generic alias) and everything it chains to.

        Raises:
            InvalidProviderSpecError: If a provider declaration is malformed.
            UnresolvableTypeError: If constructor parameters cannot be bound.
            DuplicateRegistrationError: If a producer is registered twice with
                different metadata.

        """
        registered: list[RegisteredClass] = []
        with self._rollback_on_error():
            self._register(target, registered)
        return registered

    def add(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        """Add an externally built descriptor and scan its produced type."""
        with self._rollback_on_error():
            registered = self._registry.add(descriptor)
            self.scan_chain([registered])
        return registered

    def scan_chain(self, roots: list[ServiceDescriptor]) -> list[ServiceDescriptor]:
        """Scan ``roots`` and every descriptor they produce, breadth first."""
        discovered: list[ServiceDescriptor] = []
        pending = list(roots)
        while pending:
            descriptor = pending.pop(0)
            produced = self._scan_descriptor(descriptor)
            discovered.extend(produced)
            pending.extend(produced)
        if discovered:
            logger.debug("Chain scan of %d root(s) added %d provider(s)", len(roots), len(discovered))
        return discovered

    @contextmanager
    def _rollback_on_error(self) -> Iterator[None]:
        """Undo every descriptor and scan mark of a registration that raised."""
        size = len(self._registry)
        registered_keys = set(self._registered_keys)
        static_scanned = set(self._static_scanned)
        instance_scanned = set(self._instance_scanned)
        try:
            yield
        except BaseException:
            self._registry.truncate(size)
            self._registered_keys = registered_keys
            self._static_scanned = static_scanned
            self._instance_scanned = instance_scanned
            raise

    def _register(self, target: Any, registered: list[RegisteredClass]) -> None:
        key = ServiceKey.of(target)
        cls = key.raw
        if not isinstance(cls, type):
            msg = f"Cannot register {target!r}: only classes can be registered."
            raise TypeError(msg)
        if key in self._registered_keys:
            return
        self._registered_keys.add(key)

        for dependency in own_class_metadata(cls, REGISTERS_ATTR, ()):
            self._register(dependency, registered)

        if issubclass(cls, Enum):
            constants = self._register_enum(cls, key)
            registered.append(RegisteredClass(cls=cls, key=key, descriptor=None))
            self.scan_chain(constants)
            return

        if not self._is_fetchable(cls):
            logger.debug("%s is not fetchable, registering its static providers only", cls.__qualname__)
            registered.append(RegisteredClass(cls=cls, key=key, descriptor=None))
            self.scan_chain(self._scan_static(cls))
            return

        descriptor = self._registry.add(self._class_descriptor(cls, key))
        registered.append(RegisteredClass(cls=cls, key=key, descriptor=descriptor))
        self.scan_chain([descriptor])

    def _class_descriptor(self, cls: type[Any], key: ServiceKey) -> ServiceDescriptor:
        contracts = class_contracts(key)
        scope = declared_scope(cls)
        parameters: tuple[ParameterSpec, ...] = ()
        if is_pydantic_settings_subclass(cls):
            scope = scope or Scope.SINGLETON
        else:
            init_owner = declaring_class(cls, "__init__")
            if init_owner is not None and init_owner is not object:
                parameters = parameter_specs(
                    cls.__init__,
                    bindings=member_bindings(key, init_owner),
                    label=f"{cls.__qualname__}.__init__",
                    skip_first=True,
                )
        return ServiceDescriptor(
            key=key,
            contracts=contracts,
            scope=scope or self._default_scope,
            producer=Producer(kind=ProducerKind.CONSTRUCTOR, owner=cls, parameters=parameters),
        )

    def _register_enum(self, cls: type[Enum], key: ServiceKey) -> list[ServiceDescriptor]:
        names = own_class_metadata(cls, PROVIDES_MEMBERS_ATTR)
        if names is None:
            return self._scan_static(cls)

        constants = [constant.name for constant in cls] if not names else list(names)
        contracts = class_contracts(key)
        descriptors = self._scan_static(cls)
        for name in constants:
            if name not in cls.__members__:
                msg = f"{cls.__qualname__} has no constant named {name!r}."
                raise InvalidProviderSpecError(msg)
            descriptors.append(
                self._registry.add(
                    ServiceDescriptor(
                        key=key,
                        contracts=contracts,
                        scope=Scope.SINGLETON,
                        producer=Producer(kind=ProducerKind.ENUM_CONSTANT, owner=cls, member=name),
                    ),
                ),
            )
        logger.debug("Registered %d constant(s) of %s", len(constants), cls.__qualname__)
        return descriptors

    def _is_fetchable(self, cls: type[Any]) -> bool:
        if is_abstract_class(cls):
            return False
        members = self._provider_members(cls)
        if not any(member.is_static for member in members):
            return True
        if any(not member.is_static for member in members):
            return True
        if declaring_class(cls, "__init__") is not object:
            return True
        return any(
            inspect.isfunction(attribute)
            for name, attribute in cls.__dict__.items()
            if not (name.startswith("__") and name.endswith("__"))
        )

    def _scan_descriptor(self, descriptor: ServiceDescriptor) -> list[ServiceDescriptor]:
        raw = descriptor.key.raw
        if not is_scannable_class(raw):
            return []
        added = self._scan_static(raw)
        if descriptor.identity in self._instance_scanned:
            return added
        self._instance_scanned.add(descriptor.identity)
        for member in self._provider_members(raw):
            if member.is_static:
                continue
            built = self._member_descriptor(member, owner=descriptor, owner_cls=raw)
            if built is not None:
                added.append(self._registry.add(built))
        return added

    def _scan_static(self, cls: type[Any]) -> list[ServiceDescriptor]:
        added: list[ServiceDescriptor] = []
        for member in self._provider_members(cls):
            if not member.is_static or member.declaring in self._static_scanned:
                continue
            built = self._member_descriptor(member, owner=None, owner_cls=member.declaring)
            if built is not None and not self._registry.contains(built):
                added.append(self._registry.add(built))
        self._static_scanned.update(klass for klass in cls.__mro__ if klass is not object)
        return added

    def _provider_members(self, cls: type[Any]) -> tuple[ProviderMember, ...]:
        cached = self._members.get(cls)
        if cached is None:
            cached = tuple(_discover_members(cls))
            self._members[cls] = cached
        return cached

    def _member_descriptor(
        self,
        member: ProviderMember,
        *,
        owner: ServiceDescriptor | None,
        owner_cls: type[Any],
    ) -> ServiceDescriptor | None:
        provides = member.provides
        bindings = {} if owner is None else member_bindings(owner.key, member.declaring)
        parameters: tuple[ParameterSpec, ...] = ()
        is_generator = False

        if member.is_field:
            if provides.destroy_method is not None:
                msg = f"Provider field {member.label} cannot declare a destroy_method."
                raise InvalidProviderSpecError(msg)
            produced = member.annotation
        else:
            function = member.function
            assert function is not None
            produced = type_hints(function, label=member.label).get("return", inspect.Parameter.empty)
            is_generator = inspect.isgeneratorfunction(function)
            produced = _produced_annotation(produced, member=member, is_generator=is_generator)

        try:
            if not member.is_field:
                parameters = parameter_specs(
                    member.function,  # type: ignore[arg-type]
                    bindings=bindings,
                    label=member.label,
                    skip_first=not member.is_static or member.is_classmethod,
                )
            produced = substitute_typevars(strip_annotated(produced), mapping=bindings)
            inner, nullable = split_optional(produced)
            if contains_typevar(inner):
                raise UnresolvableTypeError(produced)
            key = ServiceKey.of(inner)
            contracts = (
                explicit_contracts(provides.contracts, bindings=bindings)
                if provides.contracts
                else default_contracts(key)
            )
        except UnresolvableTypeError as exc:
            logger.warning("Skipping provider %s: %s", member.label, exc)
            return None

        return ServiceDescriptor(
            key=key,
            contracts=contracts,
            scope=self._member_scope(provides, contracts, owner=owner, nullable=nullable),
            producer=Producer(
                kind=_producer_kind(member),
                owner=owner_cls,
                member=member.name,
                parameters=parameters,
                owner_descriptor=owner,
                is_generator=is_generator,
            ),
            nullable=nullable,
            destroy=self._destroy_directive(member, key=key, owner_cls=owner_cls, bindings=bindings),
        )

    def _member_scope(
        self,
        provides: Provides,
        contracts: tuple[ServiceKey, ...],
        *,
        owner: ServiceDescriptor | None,
        nullable: bool,
    ) -> Scope:
        if nullable:
            return Scope.PER_LOOKUP
        if provides.scope is not None:
            return provides.scope
        scope = contract_scope(contracts)
        if scope is not None:
            return scope
        if owner is not None:
            return owner.scope
        return Scope.PER_LOOKUP

    def _destroy_directive(
        self,
        member: ProviderMember,
        *,
        key: ServiceKey,
        owner_cls: type[Any],
        bindings: dict[Any, Any],
    ) -> DestroyDirective | None:
        method = member.provides.destroy_method
        if method is None:
            return None

        if member.provides.destroyed_by is Destroyer.PROVIDED_INSTANCE:
            if isinstance(key.raw, type) and not callable(getattr(key.raw, method, None)):
                msg = f"{member.label} names destroy method {method!r}, which {key} does not define."
                raise InvalidProviderSpecError(msg)
            return DestroyDirective(method=method)

        try:
            attribute = inspect.getattr_static(owner_cls, method)
        except AttributeError:
            msg = f"{member.label} names destroy method {method!r}, which {owner_cls.__qualname__} does not define."
            raise InvalidProviderSpecError(msg) from None

        is_static = isinstance(attribute, (staticmethod, classmethod))
        function = attribute.__func__ if is_static else attribute
        if not inspect.isfunction(function):
            msg = f"Destroy method {method!r} of {owner_cls.__qualname__} is not a function."
            raise InvalidProviderSpecError(msg)
        if is_static != member.is_static:
            msg = (
                f"Destroy method {method!r} of {owner_cls.__qualname__} must be "
                f"{'static' if member.is_static else 'an instance method'} like {member.label}."
            )
            raise InvalidProviderSpecError(msg)

        skip_first = not is_static or isinstance(attribute, classmethod)
        positional = list(inspect.signature(function).parameters.values())[int(skip_first) :]
        if not positional:
            msg = f"Destroy method {method!r} of {owner_cls.__qualname__} must accept the destroyed value."
            raise InvalidProviderSpecError(msg)
        try:
            extra = parameter_specs(
                function,
                bindings=bindings,
                label=f"{owner_cls.__qualname__}.{method}",
                skip_first=skip_first,
                skip=frozenset({positional[0].name}),
            )
        except UnresolvableTypeError as exc:
            msg = f"Destroy method {method!r} of {owner_cls.__qualname__} has unbound parameters: {exc}"
            raise InvalidProviderSpecError(msg) from exc
        return DestroyDirective(method=method, invoked_on=Destroyer.PROVIDER, parameters=extra)


def _producer_kind(member: ProviderMember) -> ProducerKind:
    if member.is_field:
        return ProducerKind.STATIC_FIELD if member.is_static else ProducerKind.INSTANCE_FIELD
    return ProducerKind.STATIC_METHOD if member.is_static else ProducerKind.INSTANCE_METHOD


def _produced_annotation(annotation: Any, *, member: ProviderMember, is_generator: bool) -> Any:
    if annotation is inspect.Parameter.empty:
        msg = f"Provider method {member.label} has no return annotation."
        raise InvalidProviderSpecError(msg)
    if is_generator:
        if get_origin(annotation) not in _GENERATOR_ORIGINS or not get_args(annotation):
            msg = f"Generator provider {member.label} must be annotated as Iterator[T] or Generator[T, None, None]."
            raise InvalidProviderSpecError(msg)
        annotation = get_args(annotation)[0]
    if annotation is None or annotation is type(None):
        msg = f"Provider method {member.label} must return a value."
        raise InvalidProviderSpecError(msg)
    return annotation


def _discover_members(cls: type[Any]) -> Iterator[ProviderMember]:
    """Yield provider members of ``cls``, the most derived definition of each name winning."""
    seen: set[str] = set()
    for klass in cls.__mro__:
        if not is_scannable_class(klass):
            continue
        annotations = inspect.get_annotations(klass)
        hints: dict[str, Any] | None = None
        for name in [*annotations, *klass.__dict__]:
            if name in seen or (name.startswith("__") and name.endswith("__")):
                continue
            seen.add(name)
            if name in annotations:
                raw_annotation = annotations[name]
                if isinstance(raw_annotation, str):
                    if "Provides" not in raw_annotation:
                        continue
                    if hints is None:
                        hints = _class_hints(klass)
                    raw_annotation = hints.get(name, raw_annotation)
                member = _field_member(klass, name, raw_annotation)
            else:
                member = _method_member(klass, name, klass.__dict__[name])
            if member is not None:
                yield member


def _class_hints(klass: type[Any]) -> dict[str, Any]:
    try:
        return get_type_hints(klass, include_extras=True)
    except (NameError, TypeError) as exc:
        msg = f"Cannot evaluate annotations of {klass.__qualname__}: {exc}"
        raise InvalidProviderSpecError(msg) from exc


def _field_member(klass: type[Any], name: str, hint: Any) -> ProviderMember | None:
    is_static = get_origin(hint) is ClassVar
    if is_static:
        arguments = get_args(hint)
        if not arguments:
            return None
        hint = arguments[0]
    provides = next((item for item in iter_metadata(hint) if isinstance(item, Provides)), None)
    if provides is None:
        return None
    return ProviderMember(name=name, declaring=klass, provides=provides, is_static=is_static, annotation=hint)


def _method_member(klass: type[Any], name: str, attribute: object) -> ProviderMember | None:
    if isinstance(attribute, (staticmethod, classmethod)):
        function = attribute.__func__
        is_static = True
    elif inspect.isfunction(attribute):
        function = attribute
        is_static = False
    else:
        return None
    provides = provides_of(function)
    if provides is None:
        return None
    return ProviderMember(
        name=name,
        declaring=klass,
        provides=provides,
        is_static=is_static,
        function=function,
        is_classmethod=isinstance(attribute, classmethod),
    )
