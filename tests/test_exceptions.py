"""Tests for the exception hierarchy."""

from typing import Generic, TypeVar

import pytest

from provisor import (
    Container,
    ContainerClosedError,
    DuplicateRegistrationError,
    InvalidProviderSpecError,
    Provides,
    ProvisorError,
    Scope,
    ServiceDescriptor,
    ServiceNotFoundError,
    TeardownError,
    TopicDeliveryError,
    UnresolvableTypeError,
    UnsatisfiedDependencyError,
)

T = TypeVar("T")


class TestHierarchy:
    @pytest.mark.parametrize(
        "error_type",
        [
            ContainerClosedError,
            DuplicateRegistrationError,
            InvalidProviderSpecError,
            ServiceNotFoundError,
            TeardownError,
            TopicDeliveryError,
            UnresolvableTypeError,
            UnsatisfiedDependencyError,
        ],
    )
    def test_every_error_is_a_provisor_error(self, error_type: type[Exception]) -> None:
        assert issubclass(error_type, ProvisorError)


class TestServiceNotFoundError:
    def test_carries_requested_key(self, container: Container) -> None:
        class Unregistered:
            pass

        with pytest.raises(ServiceNotFoundError) as exc_info:
            container.resolve(Unregistered)

        assert exc_info.value.key.raw is Unregistered
        assert "No service is registered" in str(exc_info.value)


class TestUnsatisfiedDependencyError:
    def test_aggregates_every_missing_parameter(self, container: Container) -> None:
        class Database:
            pass

        class Mailer:
            pass

        class Service:
            def __init__(self, database: Database, mailer: Mailer) -> None:
                self.database = database
                self.mailer = mailer

        container.register(Service)

        with pytest.raises(UnsatisfiedDependencyError) as exc_info:
            container.resolve(Service)

        causes = exc_info.value.causes
        assert [cause.key.raw for cause in causes] == [Database, Mailer]
        assert exc_info.value.__cause__ is causes[0]
        assert exc_info.value.key.raw is Service

    def test_nested_failure_is_wrapped(self, container: Container) -> None:
        class Database:
            pass

        class Repository:
            def __init__(self, database: Database) -> None:
                self.database = database

        class Service:
            def __init__(self, repository: Repository) -> None:
                self.repository = repository

        container.register(Repository, Service)

        with pytest.raises(UnsatisfiedDependencyError) as exc_info:
            container.resolve(Service)

        (cause,) = exc_info.value.causes
        assert isinstance(cause, UnsatisfiedDependencyError)
        assert cause.key.raw is Repository

    def test_defaults_fill_missing_parameters(self, container: Container) -> None:
        class Retries:
            pass

        fallback = Retries()

        class Client:
            def __init__(self, retries: Retries = fallback) -> None:
                self.retries = retries

        container.register(Client)

        assert container.resolve(Client).retries is fallback

    def test_optional_parameters_receive_none(self, container: Container) -> None:
        class Cache:
            pass

        class Client:
            def __init__(self, cache: Cache | None) -> None:
                self.cache = cache

        container.register(Client)

        assert container.resolve(Client).cache is None


class TestUnresolvableTypeError:
    def test_constructor_with_unbound_type_variable(self, container: Container) -> None:
        class Repository(Generic[T]):
            def __init__(self, items: list[T]) -> None:
                self.items = items

        with pytest.raises(UnresolvableTypeError):
            container.register(Repository)


class TestDuplicateRegistrationError:
    def test_identical_descriptor_is_a_no_op(self, container: Container) -> None:
        class Clock:
            pass

        container.register(Clock)
        (descriptor,) = container.descriptors(Clock)

        assert container.add_descriptor(descriptor) is descriptor
        assert len(container.descriptors(Clock)) == 1

    def test_conflicting_descriptor_is_rejected(self, container: Container) -> None:
        class Clock:
            pass

        container.register(Clock)
        (descriptor,) = container.descriptors(Clock)
        conflicting = ServiceDescriptor(
            key=descriptor.key,
            contracts=descriptor.contracts,
            scope=Scope.SINGLETON,
            producer=descriptor.producer,
        )

        with pytest.raises(DuplicateRegistrationError):
            container.add_descriptor(conflicting)

    def test_distinct_producers_share_a_contract(self, container: Container) -> None:
        class Clock:
            pass

        class Clocks:
            @staticmethod
            @Provides()
            def clock() -> Clock:
                return Clock()

        container.register(Clock, Clocks)

        assert len(container.resolve_all(Clock)) == 2


class TestInvalidProviderSpecError:
    def test_unannotated_constructor_parameter(self, container: Container) -> None:
        class Service:
            def __init__(self, dependency) -> None:  # type: ignore[no-untyped-def]  # noqa: ANN001
                self.dependency = dependency

        with pytest.raises(InvalidProviderSpecError, match="dependency"):
            container.register(Service)
