"""
FastAPI routes for the Google Contacts OAuth bridge.
"""

from __future__ import annotations

import asyncio
import html
import logging
from http import HTTPStatus
from typing import Annotated, Any, Literal, Optional

from fastapi import APIRouter, Depends, Form, Header, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from oauth_bridge.api.mcp import MCP_PATH
from oauth_bridge.clients.google_people import GoogleAPIError
from oauth_bridge.core.errors import (
    BridgeError,
    InvalidClientError,
    InvalidRequestError,
    UpstreamUnavailableError,
)
from oauth_bridge.core.logging import redact
from oauth_bridge.dependencies import (
    get_app_settings,
    get_client_store,
    get_issuer,
    get_people_client,
    get_session_store,
    get_token_bridge,
)
from oauth_bridge.schemas import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    ProtectedResourceMetadata,
    TokenResponse,
)
from oauth_bridge.services.token_bridge import AccessInfo, TokenGrant, build_client_redirect

router = APIRouter()
api_router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

SortOrder = Literal[
    "LAST_MODIFIED_ASCENDING",
    "LAST_MODIFIED_DESCENDING",
    "FIRST_NAME_ASCENDING",
    "LAST_NAME_ASCENDING",
]

_ERROR_PAGE = """<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
    <h1 style="color: #d32f2f;">{title}</h1>
    <p>{message}</p>
    <p>Please try connecting again from your assistant.</p>
  </body>
</html>"""


def oauth_error_response(exc: BridgeError) -> JSONResponse:
    """Render a bridge error in the RFC 6749 error shape."""
    headers = dict(NO_STORE_HEADERS)
    if exc.retryable:
        headers["Retry-After"] = "5"
    return JSONResponse(
        status_code=int(exc.status_code),
        content={"error": exc.error_code, "error_description": exc.description},
        headers=headers,
    )


def _error_page(title: str, message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        content=_ERROR_PAGE.format(title=html.escape(title), message=html.escape(message)),
        status_code=status_code,
    )


def _token_response(grant: TokenGrant) -> JSONResponse:
    body = TokenResponse(
        access_token=grant.access_token,
        token_type=grant.token_type,
        expires_in=grant.expires_in,
        refresh_token=grant.refresh_token,
        scope=" ".join(grant.scopes) or None,
    )
    return JSONResponse(content=body.model_dump(exclude_none=True), headers=NO_STORE_HEADERS)


async def require_access(
    issuer: Annotated[str, Depends(get_issuer)],
    bridge: Annotated[Any, Depends(get_token_bridge)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> AccessInfo:
    """Resolve the caller's bearer token to an authenticated session."""
    realm = f'Bearer realm="{issuer}"'
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={
                "error": "unauthorized",
                "error_description": "Missing or invalid Authorization header.",
            },
            headers={"WWW-Authenticate": realm},
        )
    try:
        return await bridge.verify(token.strip())
    except BridgeError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={"error": "invalid_token", "error_description": exc.description},
            headers={"WWW-Authenticate": f'{realm}, error="invalid_token"'},
        ) from exc


AccessDependency = Annotated[AccessInfo, Depends(require_access)]


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(
    sessions: Annotated[Any, Depends(get_session_store)],
) -> JSONResponse:
    """Health endpoint that also proves the record store is reachable."""
    try:
        await asyncio.to_thread(sessions.get_by_access_token, "__health_check__")
    except Exception:  # pylint: disable=broad-except
        logger.exception("Health check could not reach the record store")
        return JSONResponse(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": "Database connectivity failed"},
        )
    return JSONResponse(content={"status": "ok", "checks": {"storage": "ok"}})


@router.get(
    "/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
    response_model_exclude_none=True,
)
async def authorization_server_metadata(
    settings: Annotated[Any, Depends(get_app_settings)],
) -> AuthorizationServerMetadata:
    issuer = settings.issuer
    documentation = settings.service_documentation_url
    return AuthorizationServerMetadata(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/authorize",
        token_endpoint=f"{issuer}/token",
        registration_endpoint=f"{issuer}/register",
        revocation_endpoint=f"{issuer}/revoke",
        scopes_supported=list(settings.oauth.scopes_supported),
        service_documentation=str(documentation) if documentation else None,
    )


@router.get(
    "/.well-known/oauth-protected-resource",
    response_model=ProtectedResourceMetadata,
    response_model_exclude_none=True,
)
async def protected_resource_metadata(
    settings: Annotated[Any, Depends(get_app_settings)],
) -> ProtectedResourceMetadata:
    documentation = settings.service_documentation_url
    return ProtectedResourceMetadata(
        resource=f"{settings.issuer}{MCP_PATH}",
        authorization_servers=[settings.issuer],
        scopes_supported=list(settings.oauth.scopes_supported),
        resource_name=settings.resource_name,
        resource_documentation=str(documentation) if documentation else None,
    )


@router.post(
    "/register",
    response_model=ClientRegistrationResponse,
    response_model_exclude_none=True,
    status_code=HTTPStatus.CREATED,
)
async def register_client(
    payload: ClientRegistrationRequest,
    clients: Annotated[Any, Depends(get_client_store)],
) -> ClientRegistrationResponse:
    """Dynamic client registration (RFC 7591)."""
    if payload.token_endpoint_auth_method not in ("client_secret_post", "none"):
        raise InvalidRequestError(
            f"Unsupported token_endpoint_auth_method {payload.token_endpoint_auth_method!r}."
        )
    registration = await asyncio.to_thread(
        clients.register_client, payload.model_dump(mode="json", exclude_none=True)
    )
    return ClientRegistrationResponse(**registration.model_dump())


@router.get("/authorize")
async def authorize(
    clients: Annotated[Any, Depends(get_client_store)],
    bridge: Annotated[Any, Depends(get_token_bridge)],
    settings: Annotated[Any, Depends(get_app_settings)],
    client_id: str = Query(...),
    response_type: str = Query("code"),
    code_challenge: str = Query(..., min_length=43, max_length=128),
    code_challenge_method: str = Query("S256"),
    redirect_uri: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    scope: Optional[str] = Query(None),
) -> RedirectResponse:
    """Start the downstream authorization and send the user to Google."""
    client = await asyncio.to_thread(clients.get_client, client_id)
    if client is None:
        raise InvalidClientError("Unknown client.")

    if redirect_uri is None:
        if len(client.redirect_uris) != 1:
            raise InvalidRequestError("redirect_uri is required for this client.")
        redirect_uri = client.redirect_uris[0]
    if response_type != "code":
        raise InvalidRequestError("Only response_type=code is supported.")
    if code_challenge_method != "S256":
        raise InvalidRequestError("Only the S256 code_challenge_method is supported.")

    requested = scope.split() if scope else []
    unsupported = set(requested) - set(settings.oauth.scopes_supported)
    if unsupported:
        raise InvalidRequestError(f"Unsupported scope: {' '.join(sorted(unsupported))}.")

    authorization_url = await bridge.authorize(
        client,
        code_challenge=code_challenge,
        redirect_uri=redirect_uri,
        client_state=state,
        scopes=requested,
    )
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)


@router.get("/google/callback", response_model=None)
async def google_callback(
    bridge: Annotated[Any, Depends(get_token_bridge)],
    code: Optional[str] = Query(None, description="Authorization code returned by Google."),
    state: Optional[str] = Query(None, description="Our authorization code, echoed by Google."),
    error: Optional[str] = Query(None),
) -> HTMLResponse | RedirectResponse:
    """Finish the Google leg and bounce the browser back to the client."""
    if error:
        logger.info("Google returned an authorization error: %s", error)
        return _error_page("Authentication Failed", f"Error: {error}", HTTPStatus.BAD_REQUEST)
    if not code or not state:
        return _error_page(
            "Authentication Failed",
            "Missing authorization code or state parameter.",
            HTTPStatus.BAD_REQUEST,
        )

    try:
        record = await bridge.complete_upstream_callback(code, state)
    except UpstreamUnavailableError as exc:
        logger.warning("Google unavailable during callback for %s", redact(state))
        return _error_page("Authentication Error", exc.description, HTTPStatus.SERVICE_UNAVAILABLE)
    except BridgeError as exc:
        logger.info("Rejected Google callback for %s: %s", redact(state), exc.description)
        return _error_page("Authentication Failed", exc.description, int(exc.status_code))

    return RedirectResponse(url=build_client_redirect(record), status_code=HTTPStatus.FOUND)


@router.post("/token", response_model=TokenResponse)
async def token(
    clients: Annotated[Any, Depends(get_client_store)],
    bridge: Annotated[Any, Depends(get_token_bridge)],
    grant_type: str = Form(...),
    code: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
) -> JSONResponse:
    """Token endpoint for the authorization_code and refresh_token grants."""
    client = await asyncio.to_thread(clients.authenticate, client_id, client_secret)

    if grant_type == "authorization_code":
        if not code or not code_verifier:
            raise InvalidRequestError("code and code_verifier are required.")
        grant = await bridge.exchange_code(
            client, code, code_verifier, redirect_uri=redirect_uri
        )
    elif grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required.")
        grant = await bridge.refresh(refresh_token, client)
    else:
        return JSONResponse(
            status_code=HTTPStatus.BAD_REQUEST,
            content={
                "error": "unsupported_grant_type",
                "error_description": f"Unsupported grant_type {grant_type!r}.",
            },
            headers=NO_STORE_HEADERS,
        )
    return _token_response(grant)


@router.post("/revoke", status_code=HTTPStatus.OK)
async def revoke(
    clients: Annotated[Any, Depends(get_client_store)],
    bridge: Annotated[Any, Depends(get_token_bridge)],
    token: str = Form(...),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
) -> JSONResponse:
    """Token revocation (RFC 7009); unknown tokens are not an error."""
    if client_id:
        await asyncio.to_thread(clients.authenticate, client_id, client_secret)
    await bridge.revoke(token)
    return JSONResponse(content={}, headers=NO_STORE_HEADERS)


def _raise_for_people_error(exc: GoogleAPIError) -> None:
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    raise HTTPException(status_code=status_code, detail=exc.message) from exc


@api_router.get("/contacts")
async def list_contacts(
    access: AccessDependency,
    people: Annotated[Any, Depends(get_people_client)],
    page_size: int = Query(100, ge=1, le=1000),
    page_token: Optional[str] = Query(None),
    sort_order: Optional[SortOrder] = Query(None),
) -> dict:
    """List the caller's Google contacts."""
    try:
        return await people.list_contacts(
            access_token=access.upstream_access_token,
            page_size=page_size,
            page_token=page_token,
            sort_order=sort_order,
        )
    except GoogleAPIError as exc:
        _raise_for_people_error(exc)


@api_router.get("/contacts/search")
async def search_contacts(
    access: AccessDependency,
    people: Annotated[Any, Depends(get_people_client)],
    query: str = Query(..., min_length=1),
    page_size: int = Query(100, ge=1, le=1000),
    read_mask: Optional[str] = Query(None),
) -> dict:
    try:
        return await people.search_contacts(
            access_token=access.upstream_access_token,
            query=query,
            page_size=page_size,
            read_mask=read_mask,
        )
    except GoogleAPIError as exc:
        _raise_for_people_error(exc)


@api_router.get("/contacts/{resource_id}")
async def get_contact(
    resource_id: str,
    access: AccessDependency,
    people: Annotated[Any, Depends(get_people_client)],
) -> dict:
    """Fetch one contact by its People API id (the part after ``people/``)."""
    try:
        return await people.get_contact(
            access_token=access.upstream_access_token,
            resource_name=f"people/{resource_id}",
        )
    except GoogleAPIError as exc:
        _raise_for_people_error(exc)


@api_router.get("/directory/search")
async def search_directory(
    access: AccessDependency,
    people: Annotated[Any, Depends(get_people_client)],
    query: str = Query(..., min_length=1),
    page_size: int = Query(100, ge=1, le=1000),
    page_token: Optional[str] = Query(None),
    read_mask: Optional[str] = Query(None),
) -> dict:
    """Search the caller's Google Workspace directory."""
    try:
        return await people.search_directory(
            access_token=access.upstream_access_token,
            query=query,
            page_size=page_size,
            page_token=page_token,
            read_mask=read_mask,
        )
    except GoogleAPIError as exc:
        _raise_for_people_error(exc)


router.include_router(api_router)

__all__ = ["NO_STORE_HEADERS", "oauth_error_response", "require_access", "router"]
