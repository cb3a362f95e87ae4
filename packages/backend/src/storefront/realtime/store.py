"""Update store — the last broadcast event, kept in Redis for catch-up.

One fixed key, overwritten by every publish, expiring after a fixed TTL.
Concurrent publishes are last-write-wins; SET is atomic per key so no
reader ever sees a partial value.
"""

import json
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from storefront.realtime.errors import UpdateStoreError
from storefront.realtime.events import UpdateEvent

logger = structlog.get_logger()


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


class UpdateStore(Protocol):
    async def get_last(self) -> Optional[dict[str, Any]]: ...

    async def save(self, event: UpdateEvent) -> None: ...


class RedisUpdateStore:
    """UpdateStore on a single Redis string key with SET ... EX."""

    def __init__(
        self,
        redis_getter: Callable[[], aioredis.Redis],
        key: str,
        ttl_seconds: int,
    ):
        self.redis_getter = redis_getter
        self.key = key
        self.ttl_seconds = ttl_seconds

    def _client(self) -> aioredis.Redis:
        try:
            return self.redis_getter()
        except RuntimeError as e:
            raise UpdateStoreError(str(e)) from e

    async def get_last(self) -> Optional[dict[str, Any]]:
        """Return the stored event, or None if absent, expired or unreadable.

        Raises UpdateStoreError if the backend fails.
        """
        try:
            raw = await self._client().get(self.key)
        except UnicodeDecodeError:
            # The pool decodes responses, so non-UTF-8 bytes fail inside get()
            logger.warning("update_store.malformed_entry", key=self.key, reason="encoding")
            return None
        except (RedisError, OSError) as e:
            raise UpdateStoreError(f"Reading {self.key} failed: {e}") from e
        if raw is None:
            return None
        try:
            value = json.loads(raw, parse_constant=_reject_constant)
        except (ValueError, TypeError):
            logger.warning("update_store.malformed_entry", key=self.key, reason="json")
            return None
        if not isinstance(value, dict):
            logger.warning(
                "update_store.unexpected_entry", key=self.key, kind=type(value).__name__
            )
            return None
        return value

    async def save(self, event: UpdateEvent) -> None:
        """Overwrite the stored event. Raises UpdateStoreError on failure."""
        try:
            await self._client().set(
                self.key, json.dumps(event.to_dict()), ex=self.ttl_seconds
            )
        except (RedisError, OSError) as e:
            raise UpdateStoreError(f"Writing {self.key} failed: {e}") from e
