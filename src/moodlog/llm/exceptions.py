"""Exceptions raised by the upstream LLM client."""

from typing import Optional


class LLMError(Exception):
    """Base exception for LLM client errors.

    This includes network errors, API authentication failures, rate limits,
    malformed responses, and timeout errors.
    """
    pass


class LLMAPIError(LLMError):
    """API-level error (non-200 response: authentication, rate limit, etc.)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LLMResponseError(LLMError):
    """Invalid or malformed response from LLM."""
    pass


class LLMTimeoutError(LLMError):
    """Request timeout error."""
    pass
