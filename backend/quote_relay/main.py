"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .market.factory import create_relay, seed_store
from .market.stream import create_stream_router
from .settings import RelaySettings

logger = logging.getLogger(__name__)


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    """Build the application. Raises if the configuration store cannot open."""
    settings = settings or RelaySettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    relay = create_relay(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Failures here abort startup; the relay never runs half-initialized
        await seed_store(relay, settings)
        await relay.start()
        logger.info("Quote relay up on %s:%d", settings.host, settings.port)
        try:
            yield
        finally:
            await relay.stop()
            logger.info("Quote relay stopped")

    app = FastAPI(title="Quote Relay", lifespan=lifespan)
    app.state.relay = relay
    app.include_router(create_stream_router(relay, token=settings.stream_token))
    return app


def main() -> None:
    import uvicorn

    settings = RelaySettings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
