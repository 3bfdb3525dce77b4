"""
Error taxonomy for the AI content service.

Every error carries the HTTP status it maps to and whether a caller may
retry the same request safely.
"""

from typing import Optional


class AIServiceError(Exception):
    """Base class for errors surfaced to callers of the service."""
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AIServiceError):
    """Missing or malformed input. Never retried."""
    http_status = 400


class SafetyRejection(AIServiceError):
    """Request text was classified as unsafe. Never retried."""
    http_status = 400

    def __init__(self, reason: str):
        super().__init__(f"Content violates safety guidelines: {reason}")
        self.reason = reason


class RateLimitExceeded(AIServiceError):
    """Daily quota exhausted for the calling user."""
    http_status = 429
    retryable = True

    def __init__(self, limit: int, count: int, retry_after: int):
        super().__init__(f"Daily AI limit reached ({limit} calls per day)")
        self.limit = limit
        self.count = count
        self.retry_after = retry_after


class UpstreamFailure(AIServiceError):
    """Classifier or generation provider failed or timed out.

    No partial state is committed when this is raised, so callers may
    retry with backoff.
    """
    http_status = 500
    retryable = True

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class NotFoundError(AIServiceError):
    """Referenced story or chapter does not exist."""
    http_status = 404


class AuthenticationError(AIServiceError):
    """Missing or invalid bearer token."""
    http_status = 401
