"""Broadcaster — fan a product update out to every open connection.

Learn: publish() never fails from the caller's point of view. Each push is
attempted independently and recorded as a DeliveryResult; failures are
logged and the loop carries on. The event is then written to the update
store even when nobody is listening, so the next browser to connect can
catch up.

Pushes happen synchronously inside the loop, so a single subscriber sees
events in publish order. Concurrent publishes race on the store write:
last write wins.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from storefront.realtime.errors import SubscriberClosedError, UpdateStoreError
from storefront.realtime.events import UpdateEvent
from storefront.realtime.registry import ConnectionRegistry, Subscriber
from storefront.realtime.store import UpdateStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class DeliveryResult:
    subscriber_id: str
    ok: bool
    error: Optional[str] = None


class ProductUpdateBroadcaster:
    """Publishes product updates to the registry and the update store."""

    def __init__(self, registry: ConnectionRegistry, store: UpdateStore):
        self.registry = registry
        self.store = store

    def _deliver(self, subscriber: Subscriber, data: dict[str, Any]) -> DeliveryResult:
        try:
            subscriber.push(data)
        except asyncio.QueueFull:
            return DeliveryResult(subscriber.id, ok=False, error="queue full")
        except SubscriberClosedError as e:
            return DeliveryResult(subscriber.id, ok=False, error=str(e))
        except Exception as e:  # one broken transport must not stop the fan-out
            logger.exception("product_updates.push_error", subscriber_id=subscriber.id)
            return DeliveryResult(subscriber.id, ok=False, error=str(e))
        return DeliveryResult(subscriber.id, ok=True)

    def fan_out(self, event: UpdateEvent) -> list[DeliveryResult]:
        """Push one event to every subscriber registered right now."""
        data = event.to_dict()
        results = self.registry.for_each(lambda s: self._deliver(s, data))
        for result in results:
            if not result.ok:
                logger.warning(
                    "product_updates.delivery_failed",
                    subscriber_id=result.subscriber_id,
                    error=result.error,
                )
        return results

    async def publish(self, payload: dict[str, Any]) -> UpdateEvent:
        """Broadcast a product update and remember it for late joiners.

        Raises TypeError or ValueError only for a payload that is not a
        plain JSON object. Delivery and store failures are logged, never
        raised.
        """
        event = UpdateEvent.create(payload)

        results = self.fan_out(event)

        stored = True
        try:
            await self.store.save(event)
        except UpdateStoreError as e:
            stored = False
            logger.warning("product_updates.store_failed", error=str(e))
        except Exception:  # mutation already committed
            stored = False
            logger.exception("product_updates.store_error")

        logger.info(
            "product_updates.published",
            type=event.payload.get("type"),
            delivered=sum(1 for r in results if r.ok),
            failed=sum(1 for r in results if not r.ok),
            stored=stored,
        )
        return event
