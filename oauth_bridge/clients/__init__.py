"""Expose constructed client wrappers."""

from .dynamodb import DynamoDBClient
from .google_auth import GoogleOAuthClient
from .google_people import GoogleAPIError, GooglePeopleClient
from .records import RecordStore
from .sqlite_store import SQLiteStore

__all__ = [
    "DynamoDBClient",
    "GoogleAPIError",
    "GoogleOAuthClient",
    "GooglePeopleClient",
    "RecordStore",
    "SQLiteStore",
]
