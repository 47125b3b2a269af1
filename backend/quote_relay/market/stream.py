"""WebSocket push channel and status endpoint."""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from .relay import QuoteRelay

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


def create_stream_router(relay: QuoteRelay, token: str = "") -> APIRouter:
    """Create the streaming router bound to a relay.

    When ``token`` is non-empty, clients must pass it as the ``token`` query
    parameter; the hub only ever sees sessions that passed this check.
    """
    router = APIRouter(tags=["streaming"])

    @router.websocket("/ws")
    async def price_socket(websocket: WebSocket, client_token: str = Query("", alias="token")) -> None:
        """Push ``price_update`` messages: replay of known prices, then live."""
        if token and not secrets.compare_digest(client_token.encode(), token.encode()):
            logger.warning("Rejected subscriber with bad token")
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        client = websocket.client.host if websocket.client else "unknown"
        logger.info("Subscriber connected: %s", client)
        try:
            await relay.hub.connect(websocket)
            while True:
                # Inbound messages are ignored; receiving detects disconnects
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Subscriber disconnected: %s", client)
        finally:
            relay.hub.disconnect(websocket)

    @router.get("/api/status")
    async def status() -> dict:
        """Read-only metrics snapshot for the admin layer."""
        return relay.metrics().to_dict()

    return router
