from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator, Sequence
from contextlib import AbstractContextManager, nullcontext
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from provisor._internal.descriptors import ProducerKind, ServiceDescriptor
from provisor._internal.injection import ParameterSpec, bind_arguments
from provisor._internal.type_keys import Injectee, ServiceKey
from provisor.exceptions import (
    ContainerClosedError,
    ServiceNotFoundError,
    TeardownError,
    UnresolvableTypeError,
    UnsatisfiedDependencyError,
)
from provisor.lock_mode import LockMode
from provisor.markers import Destroyer
from provisor.scope import Scope

if TYPE_CHECKING:
    from typing_extensions import Self

logger = logging.getLogger(__name__)

T = TypeVar("T")

START_HOOK = "post_construct"
STOP_HOOK = "pre_destroy"
_DEFAULT_STOP_KINDS = frozenset(
    {
        ProducerKind.CONSTRUCTOR,
        ProducerKind.STATIC_FIELD,
        ProducerKind.INSTANCE_FIELD,
        ProducerKind.STATIC_METHOD,
        ProducerKind.INSTANCE_METHOD,
    },
)

ResolveInjectee = Callable[[Injectee, list["ServiceHandle[Any]"]], Any]


class LifecycleState(Enum):
    """Monotonic lifecycle of a produced instance."""

    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"


class ServiceInstance:
    """A produced value with its descriptor, lifecycle state and owned handles.

    ``value`` may be ``None``; the instance record exists either way so a
    produced ``None`` is distinguishable from an absent service.
    """

    __slots__ = ("_lock", "dependencies", "descriptor", "finalizer", "state", "value")

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        value: Any,
        *,
        finalizer: Generator[Any, None, None] | None = None,
        dependencies: list[ServiceHandle[Any]] | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.value = value
        self.finalizer = finalizer
        self.dependencies = dependencies or []
        self.state = LifecycleState.CREATED
        self._lock = threading.Lock()

    def transition(self, state: LifecycleState) -> bool:
        """Move forward to ``state``; return False when already there or beyond."""
        order = list(LifecycleState)
        with self._lock:
            if order.index(state) <= order.index(self.state):
                return False
            self.state = state
            return True


class ServiceHandle(Generic[T]):
    """Caller-held reference to one service instance.

    ``get()`` produces the instance on first call. ``close()`` stops a
    per-lookup instance, then closes the per-lookup dependencies it was built
    with; closing twice is a no-op. Closing a handle to a singleton never stops
    the singleton, which lives until container shutdown.

    Examples:
        .. code-block:: python

            with container.get_handle(Connection) as handle:
                handle.get().execute("select 1")

    """

    def __init__(self, coordinator: LifecycleCoordinator, descriptor: ServiceDescriptor) -> None:
        self._coordinator = coordinator
        self._descriptor = descriptor
        self._instance: ServiceInstance | None = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def descriptor(self) -> ServiceDescriptor:
        return self._descriptor

    @property
    def state(self) -> LifecycleState | None:
        """Lifecycle state of the instance, ``None`` before ``get()``."""
        return None if self._instance is None else self._instance.state

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get(self) -> T | None:
        if self._closed:
            msg = f"Handle for {self._descriptor} is closed."
            raise RuntimeError(msg)
        if self._instance is None:
            with self._lock:
                if self._instance is None:
                    self._instance = self._coordinator.obtain(self._descriptor)
        return self._instance.value

    def was_started(self) -> bool:
        return self.state in (LifecycleState.STARTED, LifecycleState.STOPPED)

    def was_stopped(self) -> bool:
        return self.state is LifecycleState.STOPPED

    def close(self) -> None:
        """Stop a per-lookup instance.

        Raises:
            TeardownError: If a destroy hook failed. Every hook still ran.

        """
        errors = self.release()
        if errors:
            raise TeardownError(errors)

    def release(self) -> list[BaseException]:
        """Close the handle and return teardown errors instead of raising them."""
        with self._lock:
            if self._closed:
                return []
            self._closed = True
            instance = self._instance
        if instance is None or self._descriptor.scope is Scope.SINGLETON:
            return []
        return self._coordinator.stop(instance)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ServiceHandle({self._descriptor}, state={self.state})"


class LifecycleCoordinator:
    """Sequence construction, start and stop of produced instances.

    Singletons are produced at most once, under a per-descriptor lock, and
    stopped in reverse creation order at shutdown. Per-lookup instances are
    produced on every ``obtain`` and stopped only through their handle. Once
    shutdown has finished, ``obtain`` raises ``ContainerClosedError``.
    """

    def __init__(self, *, resolve_injectee: ResolveInjectee, lock_mode: LockMode) -> None:
        self._resolve_injectee = resolve_injectee
        self._lock_mode = lock_mode
        self._singletons: dict[tuple[Any, ...], ServiceInstance] = {}
        self._singleton_order: list[ServiceInstance] = []
        self._singleton_locks: dict[tuple[Any, ...], AbstractContextManager[Any]] = {}
        self._locks_guard = threading.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            msg = "The container has been shut down."
            raise ContainerClosedError(msg)

    def handle(self, descriptor: ServiceDescriptor) -> ServiceHandle[Any]:
        return ServiceHandle(self, descriptor)

    def obtain(self, descriptor: ServiceDescriptor) -> ServiceInstance:
        self.ensure_open()
        if descriptor.scope is Scope.PER_LOOKUP:
            return self._create(descriptor)

        identity = descriptor.identity
        cached = self._singletons.get(identity)
        if cached is not None:
            return cached
        with self._singleton_lock(identity):
            cached = self._singletons.get(identity)
            if cached is None:
                cached = self._create(descriptor)
                self._singletons[identity] = cached
                self._singleton_order.append(cached)
        return cached

    def resolve_arguments(
        self,
        key: ServiceKey,
        parameters: Sequence[ParameterSpec],
        handles: list[ServiceHandle[Any]],
    ) -> dict[str, Any]:
        """Resolve ``parameters`` of the producer of ``key``.

        Handles opened for the arguments are appended to ``handles``.

        Raises:
            UnsatisfiedDependencyError: If any required parameter cannot be
                resolved. Parameters with defaults fall back to the default.

        """
        values: dict[str, Any] = {}
        causes: list[BaseException] = []
        for parameter in parameters:
            try:
                values[parameter.name] = self._resolve_injectee(parameter.injectee, handles)
            except ServiceNotFoundError as exc:
                if not parameter.has_default:
                    causes.append(exc)
            except (UnsatisfiedDependencyError, UnresolvableTypeError) as exc:
                causes.append(exc)
        if causes:
            raise UnsatisfiedDependencyError(key, causes) from causes[0]
        return values

    def stop(self, instance: ServiceInstance) -> list[BaseException]:
        """Stop ``instance`` once and close the handles it owns; return teardown errors."""
        if not instance.transition(LifecycleState.STOPPED):
            return []
        errors: list[BaseException] = []
        try:
            self._destroy(instance)
        except Exception as exc:
            logger.exception("Failed to destroy %s", instance.descriptor)
            errors.append(exc)
        errors.extend(self.close_handles(instance.dependencies))
        return errors

    def close_handles(self, handles: Sequence[ServiceHandle[Any]]) -> list[BaseException]:
        errors: list[BaseException] = []
        for handle in reversed(handles):
            errors.extend(handle.release())
        return errors

    def shutdown(self) -> list[BaseException]:
        """Stop every singleton in reverse creation order and return teardown errors.

        Destroy hooks may still look services up while singletons are being
        stopped; singletons created that way are stopped too. Afterwards the
        coordinator is closed.
        """
        errors: list[BaseException] = []
        stopped = 0
        while True:
            with self._locks_guard:
                if not self._singleton_order:
                    self._closed = True
                    self._singletons.clear()
                    self._singleton_locks.clear()
                    break
                instance = self._singleton_order.pop()
            errors.extend(self.stop(instance))
            stopped += 1
        logger.debug("Stopped %d singleton(s)", stopped)
        return errors

    def _singleton_lock(self, identity: tuple[Any, ...]) -> AbstractContextManager[Any]:
        if self._lock_mode is LockMode.NONE:
            return nullcontext()
        with self._locks_guard:
            lock = self._singleton_locks.get(identity)
            if lock is None:
                lock = threading.RLock()
                self._singleton_locks[identity] = lock
            return lock

    def _create(self, descriptor: ServiceDescriptor) -> ServiceInstance:
        producer = descriptor.producer
        dependencies: list[ServiceHandle[Any]] = []
        owner_handle: ServiceHandle[Any] | None = None
        try:
            owner_instance = None
            if producer.needs_owner:
                assert producer.owner_descriptor is not None
                owner_handle = ServiceHandle(self, producer.owner_descriptor)
                owner_instance = owner_handle.get()
            arguments = self.resolve_arguments(descriptor.key, producer.parameters, dependencies)
            value = producer.produce(owner_instance, arguments)
            finalizer = None
            if producer.is_generator:
                finalizer = value
                value = next(finalizer)
            instance = ServiceInstance(
                descriptor,
                value,
                finalizer=finalizer,
                dependencies=dependencies,
            )
            self._start(instance)
        except BaseException:
            for error in self.close_handles(dependencies):
                logger.warning("Error while releasing dependencies of %s: %r", descriptor, error)
            raise
        finally:
            if owner_handle is not None:
                for error in owner_handle.release():
                    logger.warning("Error while releasing owner of %s: %r", descriptor, error)
        return instance

    def _start(self, instance: ServiceInstance) -> None:
        if instance.descriptor.producer.kind is ProducerKind.CONSTRUCTOR:
            hook = getattr(instance.value, START_HOOK, None)
            if callable(hook):
                hook()
        instance.transition(LifecycleState.STARTED)

    def _destroy(self, instance: ServiceInstance) -> None:
        if instance.finalizer is not None:
            _finish_generator(instance.finalizer)
            return
        value = instance.value
        if value is None:
            return

        descriptor = instance.descriptor
        directive = descriptor.destroy
        if directive is None:
            if descriptor.producer.kind in _DEFAULT_STOP_KINDS:
                hook = getattr(value, STOP_HOOK, None)
                if callable(hook):
                    hook()
            return
        if directive.invoked_on is Destroyer.PROVIDED_INSTANCE:
            getattr(value, directive.method)()
            return

        producer = descriptor.producer
        handles: list[ServiceHandle[Any]] = []
        try:
            arguments = self.resolve_arguments(descriptor.key, directive.parameters, handles)
            args, kwargs = bind_arguments(directive.parameters, arguments)
            if producer.needs_owner:
                assert producer.owner_descriptor is not None
                owner_handle = ServiceHandle(self, producer.owner_descriptor)
                handles.append(owner_handle)
                target = getattr(owner_handle.get(), directive.method)
            else:
                target = getattr(producer.owner, directive.method)
            target(value, *args, **kwargs)
        finally:
            errors = self.close_handles(handles)
        if errors:
            raise TeardownError(errors)


def _finish_generator(generator: Generator[Any, None, None]) -> None:
    try:
        next(generator)
    except StopIteration:
        return
    generator.close()
