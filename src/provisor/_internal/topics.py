from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any

from provisor._internal.descriptors import ServiceDescriptor
from provisor._internal.injection import ParameterSpec, bind_arguments, parameter_specs, type_hints
from provisor._internal.lifecycle import LifecycleCoordinator, ResolveInjectee, ServiceHandle
from provisor._internal.type_keys import (
    ServiceKey,
    contains_typevar,
    member_bindings,
    strip_annotated,
    substitute_typevars,
)
from provisor.exceptions import InvalidProviderSpecError, TopicDeliveryError, UnresolvableTypeError
from provisor.markers import (
    MESSAGE_RECEIVER_ATTR,
    MessageReceiver,
    SubscribeToMarker,
    has_marker,
    own_class_metadata,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscriber:
    """A method receiving published messages through its ``SubscribeTo`` parameter.

    ``owner`` is ``None`` for static subscribers, which are called on
    ``owner_class`` directly.
    """

    owner: ServiceDescriptor | None
    owner_class: type[Any]
    method: str
    message_parameter: str
    message_type: type[Any]
    parameters: tuple[ParameterSpec, ...]
    permitted_types: tuple[type[Any], ...] = ()

    def accepts(self, message: object) -> bool:
        if not isinstance(message, self.message_type):
            return False
        return not self.permitted_types or isinstance(message, self.permitted_types)

    def __str__(self) -> str:
        return f"{self.owner_class.__qualname__}.{self.method}"


def is_message_receiver(cls: type[Any]) -> bool:
    return isinstance(own_class_metadata(cls, MESSAGE_RECEIVER_ATTR), MessageReceiver)


class TopicDistributor:
    """Route published messages to matching subscriber methods.

    A subscriber matches when the message is an instance of its declared
    message type (so supertype subscribers see every subtype) and of one of
    its class's permitted types. For every delivery the owner and the extra
    parameters are resolved through handles, and per-lookup ones are closed
    before ``publish`` returns.
    """

    def __init__(self, coordinator: LifecycleCoordinator, *, resolve_injectee: ResolveInjectee) -> None:
        self._coordinator = coordinator
        self._resolve_injectee = resolve_injectee
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    @property
    def subscribers(self) -> tuple[Subscriber, ...]:
        return tuple(self._subscribers)

    def discover(self, cls: type[Any], descriptor: ServiceDescriptor | None) -> int:
        """Add the subscriber methods of a registered receiver class.

        Args:
            cls: Class marked with ``@message_receiver``.
            descriptor: The class service descriptor, or ``None`` when the
                class is not fetchable and only static subscribers apply.

        Returns:
            Number of subscribers added.

        """
        receiver = own_class_metadata(cls, MESSAGE_RECEIVER_ATTR)
        found: list[Subscriber] = []
        for name in dir(cls):
            if name.startswith("__"):
                continue
            try:
                attribute = inspect.getattr_static(cls, name)
            except AttributeError:
                continue
            subscriber = self._subscriber(cls, name, attribute, descriptor, receiver.permitted_types)
            if subscriber is not None:
                found.append(subscriber)

        with self._lock:
            self._subscribers.extend(found)
        if found:
            logger.info("Found %d new subscriber(s) on %s", len(found), cls.__qualname__)
        return len(found)

    def publish(self, message: object, *, topic: ServiceKey | None = None) -> None:
        """Deliver ``message`` to every matching subscriber.

        Raises:
            TopicDeliveryError: If any subscriber failed. Every matching
                subscriber was still invoked.
            ContainerClosedError: If the container has been shut down.

        """
        self._coordinator.ensure_open()
        matching = [subscriber for subscriber in self.subscribers if subscriber.accepts(message)]
        topic_name = topic if topic is not None else type(message).__qualname__
        if not matching:
            logger.warning("No subscribers for message %r on topic %s", message, topic_name)
            return

        errors: list[BaseException] = []
        for subscriber in matching:
            errors.extend(self._deliver(subscriber, message))
        if errors:
            raise TopicDeliveryError(errors)

    def _deliver(self, subscriber: Subscriber, message: object) -> list[BaseException]:
        handles: list[ServiceHandle[Any]] = []
        errors: list[BaseException] = []
        try:
            if subscriber.owner is None:
                target = getattr(subscriber.owner_class, subscriber.method)
            else:
                owner_handle = self._coordinator.handle(subscriber.owner)
                handles.append(owner_handle)
                target = getattr(owner_handle.get(), subscriber.method)
            values = {
                parameter.name: self._resolve_injectee(parameter.injectee, handles)
                for parameter in subscriber.parameters
            }
            args, kwargs = bind_arguments(subscriber.parameters, values)
            kwargs[subscriber.message_parameter] = message
            target(*args, **kwargs)
        except Exception as exc:
            logger.exception("Subscriber %s failed to handle %r", subscriber, message)
            errors.append(exc)
        finally:
            errors.extend(self._coordinator.close_handles(handles))
        return errors

    def _subscriber(
        self,
        cls: type[Any],
        name: str,
        attribute: object,
        descriptor: ServiceDescriptor | None,
        permitted_types: tuple[type[Any], ...],
    ) -> Subscriber | None:
        is_static = isinstance(attribute, (staticmethod, classmethod))
        function = attribute.__func__ if is_static else attribute
        if not inspect.isfunction(function):
            return None
        label = f"{cls.__qualname__}.{name}"
        try:
            hints = type_hints(function, label=label)
        except InvalidProviderSpecError:
            return None
        message_parameters = [
            parameter
            for parameter, hint in hints.items()
            if parameter != "return" and has_marker(hint, SubscribeToMarker)
        ]
        if not message_parameters:
            return None
        if len(message_parameters) > 1:
            logger.warning("Subscriber %s declares more than one SubscribeTo parameter, skipping it", label)
            return None
        if not is_static and descriptor is None:
            logger.warning("Subscriber %s needs an instance of a class that is not fetchable, skipping it", label)
            return None
        if hints.get("return", None) not in (None, type(None)):
            logger.warning("Subscriber %s returns a value that is ignored", label)

        declaring = next(klass for klass in cls.__mro__ if name in klass.__dict__)
        bindings = {} if is_static else member_bindings(descriptor.key if descriptor else None, declaring)
        message_parameter = message_parameters[0]
        message_annotation = substitute_typevars(strip_annotated(hints[message_parameter]), mapping=bindings)
        try:
            if contains_typevar(message_annotation):
                raise UnresolvableTypeError(message_annotation)
            parameters = parameter_specs(
                function,
                bindings=bindings,
                label=label,
                skip_first=not is_static or isinstance(attribute, classmethod),
                skip=frozenset({message_parameter}),
            )
        except (UnresolvableTypeError, InvalidProviderSpecError) as exc:
            logger.warning("Subscriber %s has unsupported parameters, skipping it: %s", label, exc)
            return None

        message_type = ServiceKey.of(message_annotation).raw
        if not isinstance(message_type, type):
            logger.warning("Subscriber %s declares a message type that is not a class, skipping it", label)
            return None
        return Subscriber(
            owner=None if is_static else descriptor,
            owner_class=cls,
            method=name,
            message_parameter=message_parameter,
            message_type=message_type,
            parameters=parameters,
            permitted_types=permitted_types,
        )
