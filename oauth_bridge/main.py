"""
FastAPI application entrypoint for the Google Contacts OAuth bridge.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oauth_bridge.api.mcp import create_mcp_app
from oauth_bridge.api.routes import oauth_error_response, router as api_router
from oauth_bridge.core.config import get_settings
from oauth_bridge.core.errors import BridgeError, ServerError
from oauth_bridge.core.logging import configure_logging
from oauth_bridge.dependencies import get_google_oauth_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The MCP session manager only accepts requests while its lifespan runs.
    async with app.state.mcp_app.lifespan(app):
        yield
    # The Google client is built lazily; only close it if a request built one.
    if get_google_oauth_client.cache_info().currsize:
        await get_google_oauth_client().aclose()


async def _bridge_error_handler(_: Request, exc: BridgeError) -> JSONResponse:
    return oauth_error_response(exc)


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error while serving %s", request.url.path, exc_info=exc)
    return oauth_error_response(ServerError("An internal error occurred."))


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.resource_name,
        version="0.1.0",
        description="OAuth 2.1 bridge exposing Google Contacts to MCP clients.",
        lifespan=lifespan,
    )
    app.add_exception_handler(BridgeError, _bridge_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    app.include_router(api_router)
    # Mounted last so the OAuth routes above take precedence; serves /mcp.
    app.state.mcp_app = create_mcp_app(settings.resource_name)
    app.mount("/", app.state.mcp_app)
    return app


app = create_app()

__all__ = ["app", "create_app"]
