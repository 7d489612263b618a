from provisor._internal.descriptors import ProducerKind, ServiceDescriptor
from provisor._internal.lifecycle import LifecycleState, ServiceHandle
from provisor._internal.type_keys import ServiceKey
from provisor.container import Container
from provisor.exceptions import (
    ContainerClosedError,
    DuplicateRegistrationError,
    InvalidProviderSpecError,
    ProvisorError,
    ServiceNotFoundError,
    TeardownError,
    TopicDeliveryError,
    UnresolvableTypeError,
    UnsatisfiedDependencyError,
)
from provisor.lock_mode import LockMode
from provisor.markers import (
    Destroyer,
    Injected,
    Provides,
    SubscribeTo,
    contract,
    contracts_provided,
    message_receiver,
    per_lookup,
    provides_members,
    registers,
    singleton,
)
from provisor.providers import IterableProvider, Provider
from provisor.scope import Scope
from provisor.topics import Topic

__all__ = [
    "Container",
    "ContainerClosedError",
    "Destroyer",
    "DuplicateRegistrationError",
    "Injected",
    "InvalidProviderSpecError",
    "IterableProvider",
    "LifecycleState",
    "LockMode",
    "ProducerKind",
    "Provider",
    "Provides",
    "ProvisorError",
    "Scope",
    "ServiceDescriptor",
    "ServiceHandle",
    "ServiceKey",
    "ServiceNotFoundError",
    "SubscribeTo",
    "TeardownError",
    "Topic",
    "TopicDeliveryError",
    "UnresolvableTypeError",
    "UnsatisfiedDependencyError",
    "contract",
    "contracts_provided",
    "message_receiver",
    "per_lookup",
    "provides_members",
    "registers",
    "singleton",
]
