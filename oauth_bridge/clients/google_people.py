"""Google People API client for read-only contact lookups.

Responses are forwarded as returned by Google; nothing is cached or stored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

DEFAULT_PERSON_FIELDS = ",".join(
    [
        "addresses",
        "ageRanges",
        "biographies",
        "birthdays",
        "calendarUrls",
        "clientData",
        "emailAddresses",
        "events",
        "externalIds",
        "genders",
        "imClients",
        "interests",
        "locales",
        "locations",
        "memberships",
        "metadata",
        "miscKeywords",
        "names",
        "nicknames",
        "occupations",
        "organizations",
        "phoneNumbers",
        "photos",
        "relations",
        "sipAddresses",
        "skills",
        "urls",
        "userDefined",
    ]
)

MAX_PAGE_SIZE = 1000

_STATUS_MESSAGES = {
    401: "Authentication failed. Token may be invalid or expired.",
    403: "Access forbidden. Check OAuth scopes and permissions.",
    404: "Resource not found.",
    429: "Rate limit exceeded. Please try again later.",
}


class GoogleAPIError(Exception):
    """Sanitized People API failure safe to show to downstream callers."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _translate_http_error(exc: HttpError, operation: str) -> GoogleAPIError:
    status_code = getattr(exc.resp, "status", None)
    try:
        status_code = int(status_code) if status_code is not None else None
    except (TypeError, ValueError):
        status_code = None
    logger.warning("%s failed with Google status %s", operation, status_code)
    message = _STATUS_MESSAGES.get(status_code or 0, f"{operation} failed.")
    return GoogleAPIError(message, status_code)


class GooglePeopleClient:
    """Thin async wrapper over the People API using a caller's access token."""

    def __init__(self, service_factory: Callable[[Credentials], Any] | None = None) -> None:
        self._service_factory = service_factory or (
            lambda credentials: build(
                "people", "v1", credentials=credentials, cache_discovery=False
            )
        )

    async def _execute(
        self, access_token: str, operation: str, call: Callable[[Any], Any]
    ) -> Dict[str, Any]:
        credentials = Credentials(token=access_token)

        def _run() -> Dict[str, Any]:
            service = self._service_factory(credentials)
            return call(service).execute()

        try:
            return await asyncio.to_thread(_run)
        except HttpError as exc:
            raise _translate_http_error(exc, operation) from exc

    async def list_contacts(
        self,
        *,
        access_token: str,
        page_size: int = 100,
        page_token: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "resourceName": "people/me",
            "pageSize": min(page_size, MAX_PAGE_SIZE),
            "personFields": DEFAULT_PERSON_FIELDS,
        }
        if page_token:
            params["pageToken"] = page_token
        if sort_order:
            params["sortOrder"] = sort_order
        return await self._execute(
            access_token,
            "List contacts",
            lambda service: service.people().connections().list(**params),
        )

    async def get_contact(self, *, access_token: str, resource_name: str) -> Dict[str, Any]:
        return await self._execute(
            access_token,
            "Get contact",
            lambda service: service.people().get(
                resourceName=resource_name, personFields=DEFAULT_PERSON_FIELDS
            ),
        )

    async def search_contacts(
        self,
        *,
        access_token: str,
        query: str,
        page_size: int = 100,
        read_mask: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._execute(
            access_token,
            "Search contacts",
            lambda service: service.people().searchContacts(
                query=query,
                pageSize=min(page_size, MAX_PAGE_SIZE),
                readMask=read_mask or DEFAULT_PERSON_FIELDS,
            ),
        )

    async def search_directory(
        self,
        *,
        access_token: str,
        query: str,
        page_size: int = 100,
        page_token: Optional[str] = None,
        read_mask: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "query": query,
            "pageSize": min(page_size, MAX_PAGE_SIZE),
            "readMask": read_mask or DEFAULT_PERSON_FIELDS,
            "sources": ["DIRECTORY_SOURCE_TYPE_DOMAIN_PROFILE"],
        }
        if page_token:
            params["pageToken"] = page_token
        try:
            return await self._execute(
                access_token,
                "Search directory contacts",
                lambda service: service.people().searchDirectoryPeople(**params),
            )
        except GoogleAPIError as exc:
            # Personal accounts have no directory.
            if exc.status_code in (400, 403):
                raise GoogleAPIError(
                    "Directory search is only available for Google Workspace accounts.",
                    exc.status_code,
                ) from exc
            raise


__all__ = ["DEFAULT_PERSON_FIELDS", "GoogleAPIError", "GooglePeopleClient"]
