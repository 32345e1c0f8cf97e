"""
FastAPI dependency utilities for injecting configuration.
"""

from oauth_bridge.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_issuer() -> str:
    """Public base URL the bridge advertises as its OAuth issuer."""
    return get_app_settings().issuer


__all__ = ["get_app_settings", "get_issuer"]
