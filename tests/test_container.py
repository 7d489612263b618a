"""Tests for Container registration and lookup."""

import inspect
from collections.abc import Iterable, Sequence
from typing import Generic, TypeVar

import pytest

from provisor import (
    Container,
    ContainerClosedError,
    Injected,
    IterableProvider,
    Provider,
    Provides,
    ServiceNotFoundError,
    SubscribeTo,
    TeardownError,
    Topic,
    UnresolvableTypeError,
    contract,
    message_receiver,
    registers,
    singleton,
)

T = TypeVar("T")


class Box(Generic[T]):
    def __init__(self, value: object) -> None:
        self.value = value


class Boxes:
    @staticmethod
    @Provides()
    def int_box() -> Box[int]:
        return Box(1)

    @staticmethod
    @Provides()
    def str_box() -> Box[str]:
        return Box("one")


class BoxCase(Generic[T]):
    pass


class IntBoxCase(BoxCase[int]):
    pass


class TestRegisterAndResolve:
    def test_registered_class_resolves_to_instance(self, container: Container) -> None:
        class Service:
            pass

        container.register(Service)

        assert isinstance(container.resolve(Service), Service)

    def test_constructor_dependencies_are_injected(self, container: Container) -> None:
        class Repository:
            pass

        class Service:
            def __init__(self, repository: Repository) -> None:
                self.repository = repository

        container.register(Repository, Service)

        assert isinstance(container.resolve(Service).repository, Repository)

    def test_unregistered_class_raises_not_found(self, container: Container) -> None:
        class Unregistered:
            pass

        with pytest.raises(ServiceNotFoundError) as exc_info:
            container.resolve(Unregistered)

        assert exc_info.value.key.raw is Unregistered

    def test_register_is_idempotent(self, container: Container) -> None:
        class Service:
            pass

        container.register(Service)
        container.register(Service)

        assert len(container.descriptors(Service)) == 1

    def test_has_reports_registration(self, container: Container) -> None:
        class Service:
            pass

        assert not container.has(Service)
        container.register(Service)
        assert container.has(Service)

    def test_registers_decorator_pulls_in_listed_classes(self, container: Container) -> None:
        class Repository:
            pass

        class Mailer:
            pass

        @registers(Repository, Mailer)
        class Application:
            pass

        container.register(Application)

        assert isinstance(container.resolve(Repository), Repository)
        assert isinstance(container.resolve(Mailer), Mailer)

    def test_register_rejects_non_class(self, container: Container) -> None:
        with pytest.raises(TypeError, match="only classes can be registered"):
            container.register(42)

    def test_add_instance_resolves_same_value(self, container: Container) -> None:
        class Settings:
            pass

        settings = Settings()
        container.add_instance(settings)

        assert container.resolve(Settings) is settings
        assert container.resolve(Settings) is settings

    def test_add_instance_with_explicit_contracts(self, container: Container) -> None:
        class Logger:
            pass

        class ConsoleLogger(Logger):
            pass

        logger = ConsoleLogger()
        container.add_instance(logger, contracts=(Logger,))

        assert container.resolve(Logger) is logger
        assert not container.has(ConsoleLogger)


class TestContracts:
    def test_service_is_fetchable_under_contract_supertypes(self, container: Container) -> None:
        @contract
        class Repository:
            pass

        class Base:
            pass

        class SqlRepository(Base, Repository):
            pass

        container.register(SqlRepository)

        assert isinstance(container.resolve(Repository), SqlRepository)
        assert isinstance(container.resolve(SqlRepository), SqlRepository)
        assert not container.has(Base)

    def test_bare_lookup_picks_earliest_registration(self, container: Container) -> None:
        @contract
        class Handler:
            pass

        class FirstHandler(Handler):
            pass

        class SecondHandler(Handler):
            pass

        container.register(FirstHandler, SecondHandler)

        assert isinstance(container.resolve(Handler), FirstHandler)
        assert [type(handler) for handler in container.resolve_all(Handler)] == [
            FirstHandler,
            SecondHandler,
        ]


class TestGenericKeys:
    def test_parameterized_lookup_requires_matching_arguments(self, container: Container) -> None:
        class IntBoxes:
            @staticmethod
            @Provides()
            def box() -> Box[int]:
                return Box(1)

        container.register(IntBoxes)

        assert container.resolve(Box[int]).value == 1
        with pytest.raises(ServiceNotFoundError):
            container.resolve(Box[str])

    def test_raw_lookup_matches_any_parameterization(self, container: Container) -> None:
        container.register(Boxes)

        assert [box.value for box in container.resolve_all(Box)] == [1, "one"]
        assert container.resolve(Box[str]).value == "one"

    def test_registering_parameterized_generic_class(self, container: Container) -> None:
        class Repository(Generic[T]):
            pass

        container.register(Repository[int])

        assert isinstance(container.resolve(Repository[int]), Repository)
        assert not container.has(Repository[str])

    def test_lookup_with_type_variable_raises(self, container: Container) -> None:
        with pytest.raises(UnresolvableTypeError):
            container.resolve(Box[T])


class TestRequestShapes:
    def test_optional_lookup_returns_none_when_absent(self, container: Container) -> None:
        class Cache:
            pass

        assert container.resolve(Cache | None) is None

    def test_iterable_shapes_collect_all(self, container: Container) -> None:
        container.register(Boxes)

        for shape in (list[Box], Iterable[Box], Sequence[Box]):
            assert [box.value for box in container.resolve(shape)] == [1, "one"]

    def test_registered_collection_type_wins_over_element_collection(self, container: Container) -> None:
        class Source:
            @Provides()
            def names(self) -> list[str]:
                return ["ada", "grace"]

        container.register(Source)

        assert container.resolve(list[str]) == ["ada", "grace"]
        assert container.resolve(Sequence[str]) == []

    def test_iterable_of_missing_key_is_empty(self, container: Container) -> None:
        class Plugin:
            pass

        assert container.resolve(list[Plugin]) == []
        assert len(container.resolve(IterableProvider[Plugin])) == 0

    def test_provider_defers_lookup(self, container: Container) -> None:
        class Service:
            pass

        provider = container.resolve(Provider[Service])
        assert provider.get() is None

        container.register(Service)
        assert isinstance(provider.get(), Service)

    def test_iterable_provider_yields_every_match(self, container: Container) -> None:
        container.register(Boxes)

        provider = container.resolve(IterableProvider[Box])

        assert len(provider) == 2
        assert [box.value for box in provider] == [1, "one"]


class TestInject:
    def test_inject_resolves_marked_parameters(self, container: Container) -> None:
        class Service:
            def greet(self, name: str) -> str:
                return f"hello {name}"

        container.register(Service)

        @container.inject
        def handler(name: str, service: Injected[Service]) -> str:
            return service.greet(name)

        assert handler("world") == "hello world"
        assert list(inspect.signature(handler).parameters) == ["name"]

    def test_inject_stops_per_lookup_services_after_call(self, container: Container) -> None:
        stopped: list[str] = []

        class Connection:
            def pre_destroy(self) -> None:
                stopped.append("connection")

        container.register(Connection)

        @container.inject
        def handler(connection: Injected[Connection]) -> Connection:
            assert not stopped
            return connection

        handler()

        assert stopped == ["connection"]

    def test_inject_reports_teardown_failures_after_return(self, container: Container) -> None:
        class Connection:
            def pre_destroy(self) -> None:
                msg = "close failed"
                raise OSError(msg)

        container.register(Connection)

        @container.inject
        def handler(connection: Injected[Connection]) -> None:
            pass

        with pytest.raises(TeardownError) as exc_info:
            handler()

        assert isinstance(exc_info.value.errors[0], OSError)

    def test_inject_keeps_call_error_over_teardown_failure(self, container: Container) -> None:
        class Connection:
            def pre_destroy(self) -> None:
                msg = "close failed"
                raise OSError(msg)

        container.register(Connection)

        @container.inject
        def handler(connection: Injected[Connection]) -> None:
            msg = "handler failed"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="handler failed"):
            handler()

    def test_inject_allows_explicit_override(self, container: Container) -> None:
        class Service:
            pass

        container.register(Service)
        explicit = Service()

        @container.inject
        def handler(service: Injected[Service]) -> Service:
            return service

        assert handler(service=explicit) is explicit

    def test_inject_without_markers_returns_function(self, container: Container) -> None:
        def handler(value: int) -> int:
            return value

        assert container.inject(handler) is handler

    def test_inject_binds_type_variables_from_context(self, container: Container) -> None:
        container.register(Boxes)

        def check(box: Injected[Box[T]]) -> object:
            return box.value

        assert container.inject(check, context=IntBoxCase)() == 1


class TestParameters:
    def test_resolve_parameter_binds_from_context(self, container: Container) -> None:
        container.register(Boxes)
        parameter = inspect.Parameter(
            "box",
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            annotation=Box[T],
        )

        assert container.supports_parameter(parameter, IntBoxCase)
        assert container.resolve_parameter(parameter, IntBoxCase).value == 1

    def test_unannotated_parameter_is_not_supported(self, container: Container) -> None:
        parameter = inspect.Parameter("value", inspect.Parameter.POSITIONAL_OR_KEYWORD)

        assert not container.supports_parameter(parameter)
        with pytest.raises(UnresolvableTypeError):
            container.resolve_parameter(parameter)

    def test_wrapper_shapes_are_always_supported(self, container: Container) -> None:
        class Missing:
            pass

        parameter = inspect.Parameter(
            "missing",
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            annotation=Missing | None,
        )

        assert container.supports_parameter(parameter)
        assert container.resolve_parameter(parameter) is None

    def test_bare_missing_parameter_is_not_supported(self, container: Container) -> None:
        class Missing:
            pass

        parameter = inspect.Parameter(
            "missing",
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            annotation=Missing,
        )

        assert not container.supports_parameter(parameter)


class TestShutdown:
    def test_shutdown_stops_singletons_in_reverse_creation_order(self, container: Container) -> None:
        events: list[str] = []

        @singleton
        class Database:
            def pre_destroy(self) -> None:
                events.append("database")

        @singleton
        class Repository:
            def __init__(self, database: Database) -> None:
                self.database = database

            def pre_destroy(self) -> None:
                events.append("repository")

        container.register(Database, Repository)
        container.resolve(Repository)
        container.shutdown()

        assert events == ["repository", "database"]

    def test_shutdown_callbacks_run_first_in_reverse_order(self, container: Container) -> None:
        events: list[str] = []

        @singleton
        class Database:
            def pre_destroy(self) -> None:
                events.append("database")

        container.register(Database)
        container.resolve(Database)
        container.on_shutdown(lambda: events.append("first"))
        container.on_shutdown(lambda: events.append("second"))
        container.shutdown()

        assert events == ["second", "first", "database"]

    def test_shutdown_is_idempotent(self, container: Container) -> None:
        stopped: list[str] = []

        @singleton
        class Database:
            def pre_destroy(self) -> None:
                stopped.append("database")

        container.register(Database)
        container.resolve(Database)
        container.shutdown()
        container.shutdown()

        assert stopped == ["database"]
        assert container.is_closed

    def test_closed_container_rejects_lookups(self, container: Container) -> None:
        class Service:
            pass

        container.register(Service)
        container.shutdown()

        with pytest.raises(ContainerClosedError):
            container.resolve(Service)
        with pytest.raises(ContainerClosedError):
            container.register(Service)

    def test_handles_taken_before_shutdown_are_rejected(self, container: Container) -> None:
        @singleton
        class Database:
            pass

        container.register(Database)
        handle = container.get_handle(Database)
        assert handle is not None
        container.shutdown()

        with pytest.raises(ContainerClosedError):
            handle.get()

    def test_topics_taken_before_shutdown_are_rejected(self, container: Container) -> None:
        received: list[str] = []

        @singleton
        @message_receiver()
        class Listener:
            def on_message(self, message: SubscribeTo[str]) -> None:
                received.append(message)

        container.register(Listener)
        topic = container.resolve(Topic[str])
        container.shutdown()

        with pytest.raises(ContainerClosedError):
            topic.publish("late")
        assert received == []

    def test_context_manager_shuts_down(self) -> None:
        stopped: list[str] = []

        @singleton
        class Database:
            def pre_destroy(self) -> None:
                stopped.append("database")

        with Container() as container:
            container.register(Database)
            container.resolve(Database)

        assert stopped == ["database"]
