"""Product update events and their wire encoding.

Learn: SSE frames are plain text. Each event is one `data:` line holding
a JSON object, terminated by a blank line. Lines starting with `:` are
comments; browsers ignore them, which makes them handy as keep-alives
that stop proxies from closing an idle stream.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any

# ─── Event types ─────────────────────────────────────────

CONNECTION = "connection"
STOCK_CHANGE = "stock_change"
PRICE_CHANGE = "price_change"
PRODUCT_UPDATED = "product_updated"

KEEPALIVE = ": keep-alive\n\n"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class UpdateEvent:
    """One product change, stamped by the server.

    Immutable once built: the same instance is pushed to every subscriber
    and written once to the update store.
    """

    payload: dict[str, Any]
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def create(cls, payload: dict[str, Any]) -> "UpdateEvent":
        """Validate and stamp a payload.

        Raises TypeError if the payload is not a dict or cannot be
        serialized to JSON, and ValueError if it holds NaN or infinity,
        which browsers cannot parse.
        """
        if not isinstance(payload, dict):
            raise TypeError(
                f"Update payload must be a JSON object, got {type(payload).__name__}"
            )
        # Round-trip so later mutation of the caller's dict can't leak in
        snapshot = json.loads(json.dumps(payload, allow_nan=False))
        return cls(payload=snapshot)

    def to_dict(self) -> dict[str, Any]:
        return {**self.payload, "timestamp": self.timestamp}


def handshake_event() -> dict[str, Any]:
    return {"type": CONNECTION, "message": "Connected to product updates"}


def encode_sse(data: dict[str, Any]) -> str:
    """Serialize one event as an SSE data frame."""
    return f"data: {json.dumps(data, ensure_ascii=False, allow_nan=False)}\n\n"
