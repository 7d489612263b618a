from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class ProvisorError(Exception):
    """Represent a base class for all provisor-specific failures.

    Catch this type when you want to handle any provisor error path without
    matching each concrete exception class individually.
    """


class ServiceNotFoundError(ProvisorError):
    """Signal that a bare lookup found no usable service.

    Raised by ``Container.resolve`` and by injection of a bare (non-wrapped)
    parameter when no descriptor advertises the requested key, or when exactly
    the chosen descriptor produced ``None``.

    Typical fixes include registering the class that provides the key,
    checking that generic arguments match the registered ones exactly, or
    asking for ``T | None``, ``Provider[T]`` or ``Iterable[T]`` when absence is
    an expected outcome.
    """

    def __init__(self, key: Any, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"No service is registered for {key}.")


class UnresolvableTypeError(ProvisorError):
    """Signal that a generic type parameter could not be bound.

    Raised while building a lookup key when a type expression still contains a
    ``TypeVar`` after substitution from the call-site context and from the
    declaring class. Registration of a class whose constructor needs such a
    parameter fails with this error as well.

    Typical fixes include registering or requesting a parameterized alias
    (``Box[int]`` instead of ``Box``) or subclassing the generic base with
    concrete arguments.
    """

    def __init__(self, annotation: Any, message: str | None = None) -> None:
        self.annotation = annotation
        super().__init__(message or f"Type {annotation!r} contains unbound type variables.")


class UnsatisfiedDependencyError(ProvisorError):
    """Signal that a service could not be built because a dependency is missing.

    Raised while constructing a service (or calling a provider method) when at
    least one of its parameters cannot be resolved. The error aggregates every
    failing parameter in ``causes`` and is raised ``from`` the first cause so
    the full chain is visible in tracebacks.

    Typical fixes include registering the missing dependency or declaring the
    parameter as ``T | None`` when it is optional.
    """

    def __init__(self, key: Any, causes: Sequence[BaseException]) -> None:
        self.key = key
        self.causes = tuple(causes)
        details = "; ".join(str(cause) for cause in self.causes)
        super().__init__(f"Cannot satisfy dependencies of {key}: {details}")


class DuplicateRegistrationError(ProvisorError):
    """Signal a conflicting registration for an already registered producer.

    Every descriptor is identified by its producer (constructor, member or
    constant). Registering the same producer again with a different contract
    set, scope or destroy directive raises this error. Re-registering an
    identical descriptor is a no-op and different producers that share a
    contract never collide.
    """


class InvalidProviderSpecError(ProvisorError):
    """Signal a malformed provider declaration found while scanning.

    Common triggers are provider methods without a return annotation,
    parameters without annotations, destroy directives that name a missing
    method or a method with the wrong shape, and destroy directives attached to
    provider fields.

    Raised at registration time so misconfigured applications fail on startup.
    """


class TeardownError(ProvisorError):
    """Signal that one or more destroy hooks failed.

    Raised by ``Container.shutdown`` and ``ServiceHandle.close`` after every
    instance has been given its chance to stop. The individual failures are
    available in ``errors`` in the order they happened.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = tuple(errors)
        super().__init__(f"{len(self.errors)} error(s) during teardown: {self.errors!r}")


class TopicDeliveryError(ProvisorError):
    """Signal that at least one subscriber failed while handling a message.

    Raised by ``Topic.publish``/``Container.publish`` after the message was
    offered to every matching subscriber. Each failure is also logged with the
    subscriber name. The individual failures are available in ``errors``.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = tuple(errors)
        super().__init__(f"{len(self.errors)} subscriber(s) failed: {self.errors!r}")


class ContainerClosedError(ProvisorError):
    """Signal use of a container after ``shutdown``.

    Lookups, registrations and publishes are rejected once the container has
    stopped its singletons.
    """
