"""Shared pytest fixtures for provisor tests."""

import pytest

from provisor.container import Container
from provisor.scope import Scope


@pytest.fixture()
def container() -> Container:
    """Default container with per-lookup class services."""
    return Container()


@pytest.fixture()
def container_singleton() -> Container:
    """Container with singleton as the default class scope."""
    return Container(default_scope=Scope.SINGLETON)
