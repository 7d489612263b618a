from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, get_type_hints

from provisor._internal.type_keys import Injectee, TypeBindings, resolve_injectee
from provisor.exceptions import InvalidProviderSpecError
from provisor.markers import InjectedMarker, has_marker

_VARIADIC_KINDS = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """A resolvable parameter of a constructor, provider or subscriber method."""

    name: str
    injectee: Injectee
    kind: inspect._ParameterKind = inspect.Parameter.POSITIONAL_OR_KEYWORD
    has_default: bool = False


@dataclass(frozen=True, slots=True)
class InjectedParameter:
    """Injected parameter metadata for callable wrapper generation."""

    name: str
    annotation: Any


@dataclass(frozen=True, slots=True)
class InjectedCallableInspection:
    """Injection metadata derived from a callable signature and annotations."""

    signature: inspect.Signature
    injected_parameters: tuple[InjectedParameter, ...]
    public_signature: inspect.Signature


def type_hints(function: Callable[..., Any], *, label: str) -> dict[str, Any]:
    """Evaluate annotations of ``function`` with ``Annotated`` extras kept.

    Raises:
        InvalidProviderSpecError: If an annotation cannot be evaluated.

    """
    try:
        return get_type_hints(function, include_extras=True)
    except (NameError, TypeError) as exc:
        msg = f"Cannot evaluate annotations of {label}: {exc}"
        raise InvalidProviderSpecError(msg) from exc


def parameter_specs(
    function: Callable[..., Any],
    *,
    bindings: TypeBindings,
    label: str,
    skip_first: bool = False,
    skip: frozenset[str] = frozenset(),
) -> tuple[ParameterSpec, ...]:
    """Describe the resolvable parameters of ``function``.

    Variadic parameters are ignored. Every other parameter needs an
    annotation, except parameters with defaults which are then left to their
    default.

    Args:
        function: Plain function, constructor or provider method.
        bindings: TypeVar bindings visible to the declaring class.
        label: Human-readable member name for error messages.
        skip_first: Skip the ``self``/``cls`` parameter.
        skip: Parameter names resolved by the caller itself.

    Raises:
        InvalidProviderSpecError: If a required parameter has no annotation.
        UnresolvableTypeError: If a parameter type keeps unbound type variables.

    """
    hints = type_hints(function, label=label)
    parameters = list(inspect.signature(function).parameters.values())
    if skip_first:
        parameters = parameters[1:]

    specs: list[ParameterSpec] = []
    for parameter in parameters:
        if parameter.kind in _VARIADIC_KINDS or parameter.name in skip:
            continue
        has_default = parameter.default is not inspect.Parameter.empty
        annotation = hints.get(parameter.name, inspect.Parameter.empty)
        if annotation is inspect.Parameter.empty:
            if has_default:
                continue
            msg = f"Parameter '{parameter.name}' of {label} has no type annotation."
            raise InvalidProviderSpecError(msg)
        specs.append(
            ParameterSpec(
                name=parameter.name,
                injectee=resolve_injectee(annotation, bindings=bindings),
                kind=parameter.kind,
                has_default=has_default,
            ),
        )
    return tuple(specs)


def bind_arguments(
    specs: tuple[ParameterSpec, ...],
    values: Mapping[str, Any],
) -> tuple[tuple[Any, ...], dict[str, Any]]:
    """Split resolved ``values`` into positional and keyword call arguments."""
    args: list[Any] = []
    kwargs: dict[str, Any] = {}
    for spec in specs:
        if spec.name not in values:
            continue
        if spec.kind is inspect.Parameter.POSITIONAL_ONLY:
            args.append(values[spec.name])
        else:
            kwargs[spec.name] = values[spec.name]
    return tuple(args), kwargs


class InjectedCallableInspector:
    """Inspect callables for Injected[...] parameters and public signature filtering."""

    def inspect_callable(self, callable_obj: Callable[..., Any]) -> InjectedCallableInspection:
        """Build injection metadata and a public signature for a callable."""
        signature = inspect.signature(callable_obj)
        injected_parameters = self.extract_injected_parameters(
            callable_obj=callable_obj,
            signature=signature,
        )
        hidden_parameter_names = {parameter.name for parameter in injected_parameters}
        return InjectedCallableInspection(
            signature=signature,
            injected_parameters=injected_parameters,
            public_signature=self.build_public_injected_signature(
                signature=signature,
                hidden_parameter_names=hidden_parameter_names,
            ),
        )

    def extract_injected_parameters(
        self,
        *,
        callable_obj: Callable[..., Any],
        signature: inspect.Signature,
    ) -> tuple[InjectedParameter, ...]:
        """Extract injected parameter metadata from a callable."""
        resolved_annotations = self.resolved_annotations_for_injection(callable_obj=callable_obj)
        injected_parameters: list[InjectedParameter] = []
        for parameter in signature.parameters.values():
            annotation = resolved_annotations.get(parameter.name, parameter.annotation)
            if annotation is inspect.Parameter.empty or isinstance(annotation, str):
                continue
            if not has_marker(annotation, InjectedMarker):
                continue
            injected_parameters.append(InjectedParameter(name=parameter.name, annotation=annotation))
        return tuple(injected_parameters)

    def resolved_annotations_for_injection(
        self,
        *,
        callable_obj: Callable[..., Any],
    ) -> dict[str, Any]:
        """Resolve callable annotations with extras, falling back to an empty mapping."""
        try:
            return get_type_hints(callable_obj, include_extras=True)
        except (AttributeError, NameError, TypeError):
            return {}

    def build_public_injected_signature(
        self,
        *,
        signature: inspect.Signature,
        hidden_parameter_names: set[str],
    ) -> inspect.Signature:
        """Build a signature that hides injected parameters."""
        filtered_parameters = [
            parameter
            for parameter in signature.parameters.values()
            if parameter.name not in hidden_parameter_names
        ]
        return signature.replace(parameters=filtered_parameters)
