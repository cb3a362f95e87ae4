"""SSE endpoint — long-lived product update stream for browsers.

Learn: Each browser opens GET /api/v1/sse/product-updates with
`new EventSource(...)`. The handler:
1. Registers a QueueSubscriber so no broadcast can slip past
2. Sends a handshake event
3. Replays the last stored update (catch-up), best-effort
4. Forwards live events from the queue until the client goes away

Live events that arrive while the catch-up read is in flight wait in the
queue, so the client always sees handshake → catch-up → live. The
catch-up copy and a racing live broadcast can both arrive; clients are
expected to apply updates idempotently.

Disconnect is the normal end of a stream: Starlette cancels the
generator when the client drops, and we also poll is_disconnected()
between keep-alives. Either way the finally block unregisters.
"""

from typing import Any, AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.responses import StreamingResponse

from storefront.config import settings
from storefront.realtime.broadcaster import ProductUpdateBroadcaster
from storefront.realtime.errors import RegistryClosedError, UpdateStoreError
from storefront.realtime.events import KEEPALIVE, encode_sse, handshake_event
from storefront.realtime.registry import TIMEOUT, ConnectionRegistry, QueueSubscriber
from storefront.realtime.store import UpdateStore

logger = structlog.get_logger()
router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ─── Dependencies ───────────────────────────────────────

def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.connection_registry


def get_update_store(request: Request) -> UpdateStore:
    return request.app.state.update_store


def get_broadcaster(request: Request) -> ProductUpdateBroadcaster:
    return request.app.state.broadcaster


# ─── Stream ─────────────────────────────────────────────

async def read_catch_up(store: UpdateStore) -> dict[str, Any] | None:
    """Last stored update, or None. Store failures are logged, not raised."""
    try:
        return await store.get_last()
    except UpdateStoreError as e:
        logger.warning("sse.catch_up_failed", error=str(e))
    except Exception:  # catch-up is best-effort
        logger.exception("sse.catch_up_error")
    return None


async def stream_product_updates(
    registry: ConnectionRegistry,
    store: UpdateStore,
    subscriber: QueueSubscriber,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE frames for one connection.

    The subscriber is registered on the first iteration and unregistered
    when the generator finishes, is closed, or is cancelled.
    """
    log = logger.bind(subscriber_id=subscriber.id)
    try:
        registry.register(subscriber)
    except RegistryClosedError:
        # Shutdown began after the route accepted the request
        log.info("sse.rejected_during_shutdown")
        return
    log.info("sse.connected", subscribers=len(registry))
    try:
        yield encode_sse(handshake_event())

        last_update = await read_catch_up(store)
        if last_update is not None:
            yield encode_sse(last_update)

        while True:
            event = await subscriber.next_event(timeout=keepalive_seconds)
            if event is TIMEOUT:
                if await is_disconnected():
                    break
                yield KEEPALIVE
                continue
            if event is None:
                # Terminated by the server (shutdown)
                break
            yield encode_sse(event)
    finally:
        registry.unregister(subscriber.id)
        subscriber.terminate()
        log.info("sse.disconnected", subscribers=len(registry))


# ─── Routes ─────────────────────────────────────────────

@router.get("/sse/product-updates")
async def product_updates(
    request: Request,
    registry: ConnectionRegistry = Depends(get_registry),
    store: UpdateStore = Depends(get_update_store),
):
    """Server-sent events stream of product changes.

    Frontend connects with: new EventSource('/api/v1/sse/product-updates')
    """
    if registry.closed:
        raise HTTPException(status_code=503, detail="Server is shutting down")

    subscriber = QueueSubscriber(maxsize=settings.sse_queue_size)
    stream = stream_product_updates(
        registry,
        store,
        subscriber,
        is_disconnected=request.is_disconnected,
        keepalive_seconds=settings.sse_keepalive_seconds,
    )
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/sse/stats")
async def sse_stats(registry: ConnectionRegistry = Depends(get_registry)):
    """Number of open product update streams in this process."""
    return {"subscribers": len(registry)}
