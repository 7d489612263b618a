"""Pytest plugin resolving ``Injected[...]`` test parameters from a container.

Enable it with ``pytest_plugins = ["provisor.integrations.pytest_plugin"]``
and override the ``provisor_container`` fixture. Test methods of generic test
base classes bind their type variables from the collected test class:

.. code-block:: python

    class RepositoryContract(Generic[M]):
        def test_saves(self, repository: Injected[Repository[M]]) -> None: ...


    class TestUserRepository(RepositoryContract[User]):
        pass

"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterator
from contextlib import suppress
from typing import Any, cast

import pytest

from provisor._internal.injection import InjectedCallableInspector, InjectedParameter
from provisor.container import Container

_PROVISOR_CONTAINER_ATTR = "_provisor_container"
_PROVISOR_INJECTED_PARAMETERS_ATTR = "__provisor_pytest_injected_parameters__"
_PROVISOR_ORIGINAL_SIGNATURE_ATTR = "__provisor_pytest_original_signature__"
_INJECTED_CALLABLE_INSPECTOR = InjectedCallableInspector()


@pytest.fixture()
def provisor_container() -> Container:
    """Fixture hook for the plugin-managed test container.

    Users must override this fixture in their own test suite to provide
    registrations for injected dependencies.

    """
    msg = (
        "The provisor pytest plugin requires overriding the 'provisor_container' fixture in your "
        "test suite. Define @pytest.fixture() def provisor_container() -> Container: ... "
        "and return a configured container."
    )
    raise RuntimeError(msg)


@pytest.fixture(autouse=True)
def _provisor_state(request: pytest.FixtureRequest) -> None:
    """Store the container on the test node when the test has injected parameters."""
    function = getattr(request.node, "function", None)
    if not getattr(function, _PROVISOR_INJECTED_PARAMETERS_ATTR, None):
        return
    node = cast("Any", request.node)
    setattr(node, _PROVISOR_CONTAINER_ATTR, request.getfixturevalue("provisor_container"))


def pytest_pycollect_makeitem(
    collector: Any,
    name: str,
    obj: object,
) -> Any | None:
    """Hide ``Injected[...]`` parameters from pytest fixture name matching.

    Pytest treats test function parameters as fixture names. This hook rewrites
    signatures for callables that use injection metadata so injected
    parameters are not interpreted as missing fixtures.

    Args:
        collector: Pytest collector instance.
        name: Collected object name.
        obj: Candidate object.

    Returns:
        ``None`` to continue default collection flow.

    """
    if not inspect.isfunction(obj):
        return None
    if not collector.istestfunction(obj, name):
        return None

    inspection = _INJECTED_CALLABLE_INSPECTOR.inspect_callable(obj)
    if not inspection.injected_parameters:
        return None

    obj_as_any = cast("Any", obj)
    obj_as_any.__dict__[_PROVISOR_INJECTED_PARAMETERS_ATTR] = inspection.injected_parameters
    obj_as_any.__dict__[_PROVISOR_ORIGINAL_SIGNATURE_ATTR] = inspection.signature
    obj_as_any.__signature__ = inspection.public_signature
    return None


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> Iterator[None]:
    """Wrap test function execution to resolve ``Injected[...]`` parameters.

    The test callable is swapped for ``container.inject(callable, context=cls)``
    for the duration of the call, where ``cls`` is the collected test class.
    Per-lookup services handed to the test are stopped when it returns.

    Args:
        pyfuncitem: Collected pytest function item.

    Yields:
        Control back to pytest around test execution.

    """
    original_callable = cast("Callable[..., Any]", pyfuncitem.obj)
    function = cast("Any", getattr(original_callable, "__func__", original_callable))
    injected_parameters = cast(
        "tuple[InjectedParameter, ...] | None",
        getattr(function, _PROVISOR_INJECTED_PARAMETERS_ATTR, None),
    )
    if injected_parameters is None:
        injected_parameters = _INJECTED_CALLABLE_INSPECTOR.inspect_callable(
            original_callable,
        ).injected_parameters
    container = cast("Container | None", getattr(pyfuncitem, _PROVISOR_CONTAINER_ATTR, None))
    if not injected_parameters or container is None:
        yield
        return

    had_signature_override = "__signature__" in function.__dict__
    signature_override = function.__dict__.get("__signature__")
    original_signature = cast(
        "inspect.Signature | None",
        getattr(function, _PROVISOR_ORIGINAL_SIGNATURE_ATTR, None),
    )
    if original_signature is not None:
        function.__signature__ = original_signature

    try:
        pyfuncitem.obj = container.inject(original_callable, context=getattr(pyfuncitem, "cls", None))
    finally:
        if had_signature_override:
            function.__signature__ = signature_override
        else:
            with suppress(AttributeError):
                del function.__signature__

    try:
        yield
    finally:
        pyfuncitem.obj = original_callable
