from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from provisor._internal.topics import TopicDistributor
    from provisor._internal.type_keys import ServiceKey

T = TypeVar("T")


class Topic(Generic[T]):
    """Typed in-process publish/subscribe channel.

    Request ``Topic[T]`` from the container and call ``publish``. Every
    subscriber whose ``SubscribeTo`` parameter type is the message's runtime
    type or one of its supertypes receives the message synchronously.

    Examples:
        .. code-block:: python

            @message_receiver()
            class Audit:
                def __init__(self) -> None:
                    self.seen: list[object] = []

                def on_message(self, message: SubscribeTo[object]) -> None:
                    self.seen.append(message)


            container.register(Audit)
            container.resolve(Topic[str]).publish("started")

    """

    def __init__(self, distributor: TopicDistributor, key: ServiceKey) -> None:
        self._distributor = distributor
        self._key = key

    @property
    def key(self) -> ServiceKey:
        return self._key

    def publish(self, message: T) -> None:
        self._distributor.publish(message, topic=self._key)

    def __repr__(self) -> str:
        return f"Topic[{self._key}]"
