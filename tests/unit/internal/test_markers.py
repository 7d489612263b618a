from __future__ import annotations

from typing import Annotated, get_args, get_origin

import pytest

from provisor.markers import (
    PROVIDES_ATTR,
    Injected,
    InjectedMarker,
    Provides,
    SubscribeTo,
    SubscribeToMarker,
    has_marker,
    iter_metadata,
    own_class_metadata,
    provides_of,
    singleton,
    strip_marker,
)
from provisor.scope import Scope


class Service:
    pass


def test_injected_builds_annotated_marker() -> None:
    annotation = Injected[Service]

    assert get_origin(annotation) is Annotated
    assert get_args(annotation)[0] is Service
    assert has_marker(annotation, InjectedMarker)


def test_injected_keeps_existing_metadata() -> None:
    annotation = Injected[Annotated[Service, "meta"]]

    assert get_args(annotation)[1:-1] == ("meta",)
    assert strip_marker(annotation, InjectedMarker) == Annotated[Service, "meta"]


def test_subscribe_to_builds_annotated_marker() -> None:
    annotation = SubscribeTo[str]

    assert has_marker(annotation, SubscribeToMarker)
    assert not has_marker(annotation, InjectedMarker)


def test_strip_marker_without_other_metadata_returns_type() -> None:
    assert strip_marker(Injected[Service], InjectedMarker) is Service
    assert strip_marker(Service, InjectedMarker) is Service


def test_provides_decorates_plain_and_static_functions() -> None:
    marker = Provides(scope=Scope.SINGLETON)

    def build() -> Service:
        return Service()

    wrapped = marker(staticmethod(build))

    assert isinstance(wrapped, staticmethod)
    assert getattr(build, PROVIDES_ATTR) is marker
    assert provides_of(wrapped) is marker
    assert provides_of(build) is marker


def test_provides_normalizes_contract_list() -> None:
    assert Provides(contracts=[Service]).contracts == (Service,)  # type: ignore[arg-type]


def test_provides_of_unmarked_function() -> None:
    def build() -> Service:
        return Service()

    assert provides_of(build) is None


def test_own_class_metadata_ignores_base_classes() -> None:
    @singleton
    class Base:
        pass

    class Child(Base):
        pass

    assert own_class_metadata(Base, "__provisor_scope__") is Scope.SINGLETON
    assert own_class_metadata(Child, "__provisor_scope__") is None


def test_iter_metadata() -> None:
    provides = Provides()

    assert list(iter_metadata(Annotated[Service, provides])) == [provides]
    assert list(iter_metadata(Service)) == []


@pytest.mark.parametrize("annotation", [Service, int, list[int]])
def test_has_marker_is_false_for_plain_annotations(annotation: object) -> None:
    assert not has_marker(annotation, InjectedMarker)
