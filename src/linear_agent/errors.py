"""Exception types shared across the controller."""

from __future__ import annotations


class LinearAgentError(Exception):
    """Base class for all controller errors."""


class MalformedPayloadError(LinearAgentError):
    """A verified webhook body is missing data the controller needs (HTTP 400)."""


class LinearAPIError(LinearAgentError):
    """The Linear GraphQL API answered with errors instead of data."""

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []
