"""
Error vocabulary shared by the stores, the token bridge and the HTTP adapter.

Bridge errors carry the OAuth ``error`` code and HTTP status the downstream
adapter should answer with, so routes never have to guess.
"""

from __future__ import annotations

from http import HTTPStatus


class RecordNotFoundError(Exception):
    """Raised by a store when a record is absent or has expired."""


class InvalidTransitionError(Exception):
    """Raised when an authorization code is moved to a state it cannot reach."""


class BridgeError(Exception):
    """Base class for failures surfaced to downstream OAuth clients."""

    error_code: str = "server_error"
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(self, description: str = "") -> None:
        super().__init__(description)
        self.description = description


class InvalidGrantError(BridgeError):
    """Bad, expired or consumed authorization code or refresh token."""

    error_code = "invalid_grant"
    status_code = HTTPStatus.BAD_REQUEST


class UpstreamUnavailableError(InvalidGrantError):
    """Google could not be reached; local state was left untouched."""

    error_code = "temporarily_unavailable"
    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class InvalidStateError(BridgeError):
    """The upstream callback did not correlate with a live authorization."""

    error_code = "invalid_request"
    status_code = HTTPStatus.BAD_REQUEST


class InvalidRequestError(BridgeError):
    error_code = "invalid_request"
    status_code = HTTPStatus.BAD_REQUEST


class InvalidClientError(BridgeError):
    error_code = "invalid_client"
    status_code = HTTPStatus.UNAUTHORIZED


class UnauthorizedError(BridgeError):
    """Bad or expired downstream access token."""

    error_code = "invalid_token"
    status_code = HTTPStatus.UNAUTHORIZED


class ServerError(BridgeError):
    """Unexpected internal failure; the description is always generic."""


__all__ = [
    "BridgeError",
    "InvalidClientError",
    "InvalidGrantError",
    "InvalidRequestError",
    "InvalidStateError",
    "InvalidTransitionError",
    "RecordNotFoundError",
    "ServerError",
    "UnauthorizedError",
    "UpstreamUnavailableError",
]
