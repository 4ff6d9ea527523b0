"""Error taxonomy for the search pipeline.

Every error carries a short ``user_message`` that the CLI prints instead of
a stack trace.
"""
from __future__ import annotations

from typing import Optional


class SearchError(RuntimeError):
    user_message = "Search failed. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)


class LocationError(SearchError):
    user_message = "Could not determine a location. Please enter one manually."


class LocationDenied(LocationError):
    user_message = "Location access denied. Please use a custom location instead."


class LocationUnavailable(LocationError):
    user_message = "Could not determine your location. Please use a custom location."


class GeocodeFailed(LocationError):
    user_message = "Could not find location. Please try a different address."


class ProviderError(SearchError):
    user_message = "The places provider returned an error. Please try again later."

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message or "provider error")
        self.message = message or "provider error"
        self.status = status
        self.user_message = f"Places API error: {self.message}"


class ConfigurationError(SearchError):
    user_message = "API key not configured. Set GOOGLE_MAPS_API_KEY in the environment or .env."
