from __future__ import annotations

import pytest

from provisor import Container, Injected, contract

pytest_plugins = ["provisor.integrations.pytest_plugin"]


@contract
class _Service:
    pass


class _FakeService(_Service):
    pass


@pytest.fixture()
def provisor_container() -> Container:
    container = Container()
    container.register(_FakeService)
    return container


@pytest.fixture()
def value() -> int:
    return 42


def test_injected_parameters_are_resolved_from_provisor_container(
    value: int,
    service: Injected[_Service],
) -> None:
    assert value == 42
    assert isinstance(service, _FakeService)


def test_regular_fixture_resolution_still_works_without_injected_parameters(value: int) -> None:
    assert value == 42


def test_public_provisor_container_fixture_is_available(provisor_container: Container) -> None:
    assert isinstance(provisor_container, Container)


class TestInjectedMethods:
    def test_injected_parameters_on_methods(self, service: Injected[_Service]) -> None:
        assert isinstance(service, _FakeService)
