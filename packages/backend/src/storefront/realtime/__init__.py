"""Live product updates over server-sent events.

Events flow one way:
1. A product mutation calls ProductUpdateBroadcaster.publish()
2. The broadcaster pushes the event to every subscriber in the
   ConnectionRegistry, then writes it to the UpdateStore (Redis)
3. A browser that connects later gets the stored event replayed as
   catch-up before any live events

The registry is process-local. Each worker process fans out only to its
own connections; the stored last update is shared through Redis.
"""

from storefront.realtime.broadcaster import DeliveryResult, ProductUpdateBroadcaster
from storefront.realtime.errors import (
    RealtimeError,
    RegistryClosedError,
    SubscriberClosedError,
    UpdateStoreError,
)
from storefront.realtime.events import UpdateEvent
from storefront.realtime.registry import ConnectionRegistry, QueueSubscriber, Subscriber
from storefront.realtime.store import RedisUpdateStore, UpdateStore

__all__ = [
    "ConnectionRegistry",
    "DeliveryResult",
    "ProductUpdateBroadcaster",
    "QueueSubscriber",
    "RealtimeError",
    "RedisUpdateStore",
    "RegistryClosedError",
    "Subscriber",
    "SubscriberClosedError",
    "UpdateEvent",
    "UpdateStore",
    "UpdateStoreError",
]
