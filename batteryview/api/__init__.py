"""Gemini API client."""

from batteryview.api.gemini_client import (
    ExtractionError,
    GeminiAPIError,
    GeminiClient,
    MissingCredentialError,
    RateLimitError,
)

__all__ = [
    "GeminiClient",
    "GeminiAPIError",
    "RateLimitError",
    "ExtractionError",
    "MissingCredentialError",
]
