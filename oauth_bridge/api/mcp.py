"""
MCP endpoint exposing read-only Google Contacts tools.

Bearer tokens are the access tokens minted by this bridge's ``/token``
endpoint. Verification goes through ``TokenBridge.verify``, so each MCP call
slides the session expiry and refreshes Google credentials close to expiry
before the tool runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Dict, Literal, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.auth import AccessToken, TokenVerifier
from fastmcp.server.dependencies import get_access_token
from pydantic import Field

from oauth_bridge import dependencies
from oauth_bridge.clients.google_people import GoogleAPIError
from oauth_bridge.core.errors import UnauthorizedError
from oauth_bridge.core.logging import redact

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"

PageSize = Annotated[int, Field(ge=1, le=1000, description="Number of results to return (1-1000).")]


class BridgeTokenVerifier(TokenVerifier):
    """Accepts the bridge's own downstream access tokens."""

    async def verify_token(self, token: str) -> Optional[AccessToken]:
        try:
            info = await dependencies.get_token_bridge().verify(token)
        except UnauthorizedError:
            logger.info("Rejected MCP bearer token %s", redact(token))
            return None
        return AccessToken(token=token, client_id=info.client_id, scopes=list(info.scopes))


async def _upstream_access_token() -> str:
    access = get_access_token()
    if access is None:
        raise ToolError("Missing authentication. Please authenticate via OAuth.")
    session = await asyncio.to_thread(
        dependencies.get_session_store().get_by_access_token, access.token
    )
    if session is None:
        raise ToolError("Session not found or expired.")
    return session.upstream_access_token


async def _call_people(operation: str, **kwargs: Any) -> Dict[str, Any]:
    access_token = await _upstream_access_token()
    people = dependencies.get_people_client()
    try:
        return await getattr(people, operation)(access_token=access_token, **kwargs)
    except GoogleAPIError as exc:
        raise ToolError(f"Google API error: {exc.message}") from exc


async def list_contacts(
    page_size: PageSize = 100,
    page_token: Optional[str] = None,
    sort_order: Optional[
        Literal[
            "LAST_MODIFIED_ASCENDING",
            "LAST_MODIFIED_DESCENDING",
            "FIRST_NAME_ASCENDING",
            "LAST_NAME_ASCENDING",
        ]
    ] = None,
) -> Dict[str, Any]:
    """List contacts for the authenticated user. Returns a paginated list of contacts."""
    return await _call_people(
        "list_contacts", page_size=page_size, page_token=page_token, sort_order=sort_order
    )


async def get_contact(
    resource_name: Annotated[
        str,
        Field(min_length=1, description="Resource name of the contact (e.g., people/c1234567890)."),
    ],
) -> Dict[str, Any]:
    """Get detailed information about a specific contact by resource name."""
    return await _call_people("get_contact", resource_name=resource_name)


async def search_contacts(
    query: Annotated[str, Field(min_length=1, description="Search query.")],
    page_size: PageSize = 100,
    read_mask: Optional[str] = None,
) -> Dict[str, Any]:
    """Search contacts across names, emails, phone numbers, organizations and more."""
    return await _call_people(
        "search_contacts", query=query, page_size=page_size, read_mask=read_mask
    )


async def search_directory(
    query: Annotated[str, Field(min_length=1, description="Search query for directory people.")],
    page_size: PageSize = 100,
    page_token: Optional[str] = None,
    read_mask: Optional[str] = None,
) -> Dict[str, Any]:
    """Search directory contacts. Only available for Google Workspace accounts."""
    return await _call_people(
        "search_directory",
        query=query,
        page_size=page_size,
        page_token=page_token,
        read_mask=read_mask,
    )


def create_mcp_server(name: str) -> FastMCP:
    server = FastMCP(name=name, auth=BridgeTokenVerifier())
    for tool in (list_contacts, get_contact, search_contacts, search_directory):
        server.tool(tool)
    return server


def create_mcp_app(name: str):
    """Streamable HTTP app serving the contacts tools at ``/mcp``.

    Stateless with plain JSON responses, since every call re-authenticates
    with its bearer token.
    """
    return create_mcp_server(name).http_app(
        path=MCP_PATH, stateless_http=True, json_response=True
    )


__all__ = ["BridgeTokenVerifier", "MCP_PATH", "create_mcp_app", "create_mcp_server"]
