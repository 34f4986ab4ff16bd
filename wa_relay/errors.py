"""
Error taxonomy for the relay.

Each error carries the HTTP status code it maps to; the handlers registered
in main.py translate them into JSON responses.
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for errors surfaced to HTTP clients."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(RelayError):
    """A required input field is missing or empty."""

    status_code = 400


class NotConfiguredError(RelayError):
    """A send was attempted before provider credentials were set."""

    status_code = 400


class UpstreamError(RelayError):
    """The provider call failed, timed out or returned a non-success response."""

    status_code = 500


class WebhookParseError(RelayError):
    """The webhook payload does not have the expected envelope shape."""

    status_code = 500
