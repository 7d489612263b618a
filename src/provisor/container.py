from __future__ import annotations

import functools
import inspect
import logging
import threading
from collections.abc import Callable
from contextlib import AbstractContextManager, nullcontext
from types import TracebackType
from typing import TYPE_CHECKING, Any, TypeVar, cast

from provisor._internal.contracts import default_contracts, explicit_contracts
from provisor._internal.descriptors import Producer, ProducerKind, ServiceDescriptor
from provisor._internal.injection import InjectedCallableInspector
from provisor._internal.lifecycle import LifecycleCoordinator, ServiceHandle
from provisor._internal.registry import DescriptorRegistry
from provisor._internal.scanner import ProvidesScanner
from provisor._internal.topics import TopicDistributor, is_message_receiver
from provisor._internal.type_keys import (
    Injectee,
    ServiceKey,
    WrapperKind,
    declaring_class,
    member_bindings,
    merged_bindings,
    resolve_injectee,
)
from provisor.exceptions import (
    ContainerClosedError,
    ProvisorError,
    ServiceNotFoundError,
    TeardownError,
    UnresolvableTypeError,
)
from provisor.lock_mode import LockMode
from provisor.providers import IterableProvider, Provider
from provisor.scope import Scope
from provisor.topics import Topic

if TYPE_CHECKING:
    from typing_extensions import Self

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


class Container:
    """Register annotated classes and resolve the services they provide.

    Registering a class makes it fetchable under its contracts (the class and
    every ``@contract`` supertype, or its ``@contracts_provided`` list) and
    registers every ``Provides`` field and method it declares, transitively
    through the types those members produce. Classes marked
    ``@message_receiver`` also contribute topic subscribers.

    Lookup keys are concrete types or parameterized generics; ``Box[int]`` and
    ``Box[str]`` are different keys while a bare ``Box`` matches any
    parameterization. Request shapes select delivery: ``T`` raises when absent,
    ``T | None`` yields ``None``, ``Provider[T]`` defers the lookup,
    ``Iterable[T]`` (or ``Sequence[T]``/``list[T]``) and
    ``IterableProvider[T]`` collect every match. A service registered under
    the collection type itself, such as a provider returning ``list[str]``,
    is returned as is instead.

    When a bare lookup matches several services, the earliest registered one
    wins. Per-lookup instances obtained without a handle are owned by the
    caller and never stopped by the container; use ``get_handle`` when their
    destroy hook must run.
    """

    def __init__(
        self,
        *,
        default_scope: Scope = Scope.PER_LOOKUP,
        lock_mode: LockMode = LockMode.THREAD,
    ) -> None:
        """Initialize an empty container.

        Args:
            default_scope: Scope of class services that declare neither
                ``@singleton`` nor ``@per_lookup``.
            lock_mode: ``LockMode.THREAD`` makes class scanning and singleton
                creation happen at most once under concurrent first access.
                ``LockMode.NONE`` drops the locks for single-threaded use.

        Examples:
            .. code-block:: python

                container = Container()

                singleton_container = Container(default_scope=Scope.SINGLETON)

        """
        self._default_scope = default_scope
        self._lock_mode = lock_mode
        self._lock: AbstractContextManager[Any] = (
            threading.RLock() if lock_mode is LockMode.THREAD else nullcontext()
        )
        self._registry = DescriptorRegistry()
        self._scanner = ProvidesScanner(self._registry, default_scope=default_scope)
        self._lifecycle = LifecycleCoordinator(
            resolve_injectee=self._resolve_injectee,
            lock_mode=lock_mode,
        )
        self._topics = TopicDistributor(self._lifecycle, resolve_injectee=self._resolve_injectee)
        self._injected_callable_inspector = InjectedCallableInspector()
        self._shutdown_callbacks: list[Callable[[], Any]] = []
        self._closed = False

    # region Registration Methods
    def register(self, *classes: Any) -> None:
        """Register classes, their provider members and everything they chain to.

        Registration is idempotent per class. Non-fetchable classes (abstract
        classes, protocols, enums and utility classes holding only static
        providers) are not fetchable themselves, but their providers are.

        Args:
            *classes: Classes or parameterized generic aliases such as
                ``Repository[User]``.

        Raises:
            InvalidProviderSpecError: If a provider declaration is malformed.
            UnresolvableTypeError: If a constructor parameter type cannot be bound.
            DuplicateRegistrationError: If a producer is re-registered with
                different metadata.

        Examples:
            .. code-block:: python

                class Clock:
                    @Provides(scope=Scope.SINGLETON)
                    def timezone(self) -> Timezone:
                        return Timezone("UTC")


                container.register(Clock)
                container.resolve(Timezone)

        """
        self._ensure_open()
        with self._lock:
            for cls in classes:
                for registered in self._scanner.register(cls):
                    if is_message_receiver(registered.cls):
                        self._topics.discover(registered.cls, registered.descriptor)

    def add_descriptor(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        """Register a prebuilt descriptor and scan the type it produces.

        Returns:
            The registered descriptor, which is the existing one when an
            identical descriptor was already registered.

        """
        self._ensure_open()
        with self._lock:
            return self._scanner.add(descriptor)

    def add_instance(self, instance: Any, *, contracts: tuple[Any, ...] | None = None) -> None:
        """Register a prebuilt value as a singleton.

        The value is never torn down by the container.

        Args:
            instance: Value to return on lookup.
            contracts: Explicit contracts. Defaults to ``type(instance)`` and its
                ``@contract`` supertypes.

        Examples:
            .. code-block:: python

                container.add_instance(Settings(dsn="sqlite://"))
                container.add_instance(console_logger, contracts=(Logger,))

        """
        key = ServiceKey(type(instance))
        self.add_descriptor(
            ServiceDescriptor(
                key=key,
                contracts=explicit_contracts(contracts, bindings={}) if contracts else default_contracts(key),
                scope=Scope.SINGLETON,
                producer=Producer(kind=ProducerKind.CONSTANT, owner=type(instance), value=instance),
            ),
        )

    def on_shutdown(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` at shutdown, before singletons are stopped.

        Callbacks run in reverse registration order.
        """
        self._shutdown_callbacks.append(callback)

    # endregion Registration Methods

    # region Resolution Methods
    def resolve(self, key: Any) -> Any:
        """Resolve a service by type expression.

        Args:
            key: ``T``, ``T | None``, ``Provider[T]``, ``IterableProvider[T]``,
                ``Iterable[T]``/``Sequence[T]``/``list[T]`` or ``Topic[T]``.

        Returns:
            The value in the requested shape.

        Raises:
            ServiceNotFoundError: If a bare ``T`` matches nothing or its
                producer yields ``None``.
            UnsatisfiedDependencyError: If building the service needs a
                dependency that cannot be resolved.
            UnresolvableTypeError: If ``key`` contains type variables.

        Examples:
            .. code-block:: python

                repository = container.resolve(Repository[User])
                cache = container.resolve(Cache | None)
                handlers = container.resolve(list[Handler])

        """
        self._ensure_open()
        handles: list[ServiceHandle[Any]] = []
        return self._resolve_injectee(self._injectee(key), handles)

    def resolve_all(self, key: Any) -> list[Any]:
        """Resolve every service registered under ``key``, in registration order."""
        return [handle.get() for handle in self.get_all_handles(key)]

    def get_handle(self, key: Any) -> ServiceHandle[Any] | None:
        """Return a handle for the service chosen by a bare lookup of ``key``.

        Returns:
            An unopened handle, or ``None`` when nothing is registered.

        """
        self._ensure_open()
        descriptors = self._registry.find(self._service_key(key))
        if not descriptors:
            return None
        return self._lifecycle.handle(descriptors[0])

    def get_all_handles(self, key: Any) -> list[ServiceHandle[Any]]:
        """Return one handle per service registered under ``key``."""
        self._ensure_open()
        return [self._lifecycle.handle(descriptor) for descriptor in self._registry.find(self._service_key(key))]

    def descriptors(self, key: Any) -> list[ServiceDescriptor]:
        """Return the descriptors a lookup of ``key`` can choose from."""
        return self._registry.find(self._service_key(key))

    def has(self, key: Any) -> bool:
        return bool(self.descriptors(key))

    def supports_parameter(self, parameter: inspect.Parameter, context: type[Any] | None = None) -> bool:
        """Return whether ``resolve_parameter`` can supply ``parameter``.

        Wrapper shapes (optional, provider, iterable, topic) are always
        supported; bare types need a registered service.
        """
        try:
            injectee = self._parameter_injectee(parameter, context)
        except ProvisorError:
            return False
        if injectee.wrapper is not WrapperKind.BARE:
            return True
        return bool(self._registry.find(injectee.key))

    def resolve_parameter(self, parameter: inspect.Parameter, context: type[Any] | None = None) -> Any:
        """Resolve a value for ``parameter`` by its annotation.

        Type variables in the annotation are bound from ``context``, for
        example a concrete test class deriving from a generic test base.

        Raises:
            UnresolvableTypeError: If the annotation is missing, a string, or
                keeps unbound type variables.
            ServiceNotFoundError: If a bare type matches nothing.

        """
        self._ensure_open()
        handles: list[ServiceHandle[Any]] = []
        return self._resolve_injectee(self._parameter_injectee(parameter, context), handles)

    def inject(self, func: F, *, context: type[Any] | None = None) -> F:
        """Wrap ``func`` so its ``Injected[T]`` parameters are resolved on each call.

        Injected parameters are hidden from the wrapper's signature. Handles
        opened for a call are closed when it returns, which stops per-lookup
        instances the call received. Teardown failures raise ``TeardownError``
        after a normal return; when the call itself raised, they are logged
        and the original exception propagates.

        Args:
            func: Function or bound method with ``Injected[...]`` parameters.
            context: Concrete class used to bind type variables of generic
                declaring classes. Defaults to the class of a bound method.

        Examples:
            .. code-block:: python

                @container.inject
                def handle(request: Request, service: Injected[Service]) -> Response:
                    return service.handle(request)

        """
        inspection = self._injected_callable_inspector.inspect_callable(func)
        if not inspection.injected_parameters:
            return func

        bindings = self._function_bindings(func, context)
        injectees = {
            parameter.name: resolve_injectee(parameter.annotation, bindings=bindings)
            for parameter in inspection.injected_parameters
        }

        @functools.wraps(func)
        def _injected(*args: Any, **kwargs: Any) -> Any:
            self._ensure_open()
            handles: list[ServiceHandle[Any]] = []
            try:
                for name, injectee in injectees.items():
                    if name not in kwargs:
                        kwargs[name] = self._resolve_injectee(injectee, handles)
                result = func(*args, **kwargs)
            except BaseException:
                for error in self._lifecycle.close_handles(handles):
                    logger.warning("Error while releasing injected services of %s: %r", func, error)
                raise
            errors = self._lifecycle.close_handles(handles)
            if errors:
                raise TeardownError(errors)
            return result

        _injected.__signature__ = inspection.public_signature  # type: ignore[attr-defined]
        return cast("F", _injected)

    # endregion Resolution Methods

    # region Topics
    def publish(self, message: object, *, topic: Any = None) -> None:
        """Deliver ``message`` to every subscriber that accepts its runtime type.

        Raises:
            TopicDeliveryError: If a subscriber failed; all others still ran.

        """
        self._ensure_open()
        self._topics.publish(message, topic=None if topic is None else self._service_key(topic))

    def topic(self, message_type: type[T]) -> Topic[T]:
        self._ensure_open()
        return Topic(self._topics, self._service_key(message_type))

    # endregion Topics

    # region Shutdown
    def shutdown(self) -> None:
        """Run shutdown callbacks and stop every singleton.

        Callbacks run first in reverse registration order, then singletons stop
        in reverse creation order. Every step runs even when an earlier one
        fails. Calling ``shutdown`` again does nothing.

        Raises:
            TeardownError: With every collected failure, after all teardown ran.

        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        errors: list[BaseException] = []
        for callback in reversed(self._shutdown_callbacks):
            try:
                callback()
            except Exception as exc:
                logger.exception("Shutdown callback %r failed", callback)
                errors.append(exc)
        self._shutdown_callbacks.clear()
        errors.extend(self._lifecycle.shutdown())
        logger.debug("Container shut down with %d error(s)", len(errors))
        if errors:
            raise TeardownError(errors)

    def close(self) -> None:
        self.shutdown()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.shutdown()

    # endregion Shutdown

    def _resolve_injectee(self, injectee: Injectee, handles: list[ServiceHandle[Any]]) -> Any:
        wrapper = injectee.wrapper
        key = injectee.key
        if wrapper is WrapperKind.PROVIDER:
            return Provider(self, key)
        if wrapper is WrapperKind.ITERABLE_PROVIDER:
            return IterableProvider(self, key)
        if wrapper is WrapperKind.TOPIC:
            return Topic(self._topics, key)

        if wrapper is WrapperKind.ITERABLE and injectee.collection is not None:
            produced = self._registry.find(injectee.collection)
            if produced:
                handle = self._lifecycle.handle(produced[0])
                handles.append(handle)
                value = handle.get()
                if value is not None:
                    return value

        descriptors = self._registry.find(key)
        if wrapper is WrapperKind.ITERABLE:
            values = []
            for descriptor in descriptors:
                handle = self._lifecycle.handle(descriptor)
                handles.append(handle)
                values.append(handle.get())
            return values

        if not descriptors:
            if wrapper is WrapperKind.OPTIONAL:
                return None
            raise ServiceNotFoundError(key)
        handle = self._lifecycle.handle(descriptors[0])
        handles.append(handle)
        value = handle.get()
        if value is None and wrapper is WrapperKind.BARE:
            raise ServiceNotFoundError(key, f"The service registered for {key} produced None.")
        return value

    def _injectee(self, key: Any) -> Injectee:
        if isinstance(key, ServiceKey):
            return Injectee(key=key)
        return resolve_injectee(key)

    def _service_key(self, key: Any) -> ServiceKey:
        if isinstance(key, ServiceKey):
            return key
        return resolve_injectee(key).key

    def _parameter_injectee(self, parameter: inspect.Parameter, context: type[Any] | None) -> Injectee:
        annotation = parameter.annotation
        if annotation is inspect.Parameter.empty or isinstance(annotation, str):
            msg = f"Parameter '{parameter.name}' needs an evaluated type annotation."
            raise UnresolvableTypeError(annotation, msg)
        return resolve_injectee(
            annotation,
            bindings=merged_bindings(None if context is None else ServiceKey(context)),
        )

    def _function_bindings(self, func: Callable[..., Any], context: type[Any] | None) -> dict[Any, Any]:
        if context is None:
            owner = getattr(func, "__self__", None)
            if owner is None:
                return {}
            context = owner if isinstance(owner, type) else type(owner)
        name = getattr(func, "__name__", None)
        declaring = declaring_class(context, name) if name else None
        if declaring is None:
            return merged_bindings(ServiceKey(context))
        return member_bindings(ServiceKey(context), declaring)

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "The container has been shut down."
            raise ContainerClosedError(msg)
