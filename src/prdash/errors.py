"""Custom exception types for the PR dashboard backend."""

from __future__ import annotations

from typing import Optional


class DashboardError(Exception):
    """Base exception for all recoverable dashboard errors."""


class ConfigurationError(DashboardError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(DashboardError):
    """Raised when GitHub credentials are unavailable or rejected."""


class ValidationError(DashboardError):
    """Raised when a request body or parameter is malformed."""


class ApiError(DashboardError):
    """Raised when a GitHub API request fails or returns an unexpected response."""


class RateLimitError(ApiError):
    """Raised when GitHub throttles the caller.

    ``retry_after_ms`` is the suggested delay before the caller tries again.
    """

    def __init__(self, message: str, retry_after_ms: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class ResolutionError(ApiError):
    """Raised when an organization, repository or user cannot be resolved."""


class QueryError(ApiError):
    """Raised when GitHub rejects a GraphQL query with a non-empty error list."""
