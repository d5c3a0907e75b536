"""
Event Bus

In-process publish/subscribe over a registry fixed at startup. Every event
is also broadcast on its Redis pub/sub channels for external subscribers.
"""

import json
from types import MappingProxyType
from typing import Mapping, Optional, Protocol, Tuple, Type

import redis.asyncio as redis
from redis.exceptions import RedisError

from agent_pipeline.logging_config import get_logger
from agent_pipeline.services.events import Event

logger = get_logger(__name__)


class Listener(Protocol):
    """Reacts to one event type; must tolerate being called more than once"""

    async def handle(self, event: Event) -> None:
        ...


ListenerRegistry = Mapping[Type[Event], Tuple[Listener, ...]]


def freeze_registry(table) -> ListenerRegistry:
    """Read-only copy of an event type -> listeners table"""
    return MappingProxyType({event_type: tuple(listeners) for event_type, listeners in table.items()})


class EventBroadcaster:
    """
    Publishes events on Redis pub/sub

    Message format: {"event": <broadcast name>, "data": <payload>}
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def broadcast(self, event: Event) -> int:
        """
        Publish the event on every channel it names

        Returns:
            Total number of subscribers that received it
        """
        message = json.dumps({"event": event.broadcast_name, "data": event.broadcast_payload()})
        receivers = 0
        for channel in event.channels():
            receivers += await self.redis.publish(channel, message)
        logger.debug("Event broadcast", event_name=event.broadcast_name, receivers=receivers)
        return receivers


class EventBus:
    """
    Dispatches events to the listeners registered for their type

    A listener fault is logged with its traceback and never reaches the
    publisher: the publisher's state change is already committed.
    """

    def __init__(self, registry: ListenerRegistry, broadcaster: Optional[EventBroadcaster] = None):
        """
        Args:
            registry: Event type -> listeners, built once at startup
            broadcaster: Pub/sub broadcaster (None disables broadcasting)
        """
        self._registry = registry if isinstance(registry, MappingProxyType) else freeze_registry(registry)
        self.broadcaster = broadcaster

    @property
    def registry(self) -> ListenerRegistry:
        return self._registry

    def listeners_for(self, event: Event) -> Tuple[Listener, ...]:
        return self._registry.get(type(event), ())

    async def publish(self, event: Event) -> None:
        """
        Broadcast the event, then hand it to each registered listener

        Never raises: broadcast and listener faults are logged, since the
        caller has already committed the state change.
        """
        if self.broadcaster is not None:
            try:
                await self.broadcaster.broadcast(event)
            except RedisError as e:
                logger.error("Event broadcast failed", event_name=event.broadcast_name, error=str(e))
            except Exception as e:
                logger.error(
                    "Event broadcast failed",
                    event_name=event.broadcast_name,
                    error=str(e),
                    exc_info=True,
                )

        for listener in self.listeners_for(event):
            try:
                await listener.handle(event)
            except Exception as e:
                logger.error(
                    "Event listener failed",
                    event_name=event.broadcast_name,
                    listener=type(listener).__name__,
                    error=str(e),
                    exc_info=True,
                )
