"""
Error taxonomy for the artifact store.

Every failure the store reports is one of these types, so the HTTP layer
can map them to status codes in a single place and generator-specific
error shapes never reach callers.
"""


class SiteGenError(Exception):
    """Base class for all artifact store errors."""
    pass


class ValidationError(SiteGenError):
    """Missing or malformed input, rejected before any store mutation."""
    pass


class NotFoundError(SiteGenError):
    """No such artifact or version."""
    pass


class AccessDeniedError(SiteGenError):
    """
    Ownership or visibility violation.

    The message never includes the artifact id, so a private artifact
    looks the same to every non-owner.
    """

    def __init__(self, message: str = "Access denied. This website is private."):
        super().__init__(message)


class ForbiddenError(AccessDeniedError):
    """Operation is never permitted on this artifact (e.g. forking a private one)."""

    def __init__(self, message: str = "Cannot fork private websites"):
        super().__init__(message)


class ConflictError(SiteGenError):
    """Reserved for optimistic-concurrency checks."""
    pass


class UpstreamGenerationError(SiteGenError):
    """Content generator failure. ``retryable`` tells callers whether to try again."""

    retryable = False
    kind = "upstream_error"


class GeneratorUnavailable(UpstreamGenerationError):
    retryable = True
    kind = "unavailable"


class GenerationTimeout(GeneratorUnavailable):
    kind = "timeout"


class GeneratorRateLimited(UpstreamGenerationError):
    retryable = True
    kind = "rate_limited"


class GeneratorSafetyBlocked(UpstreamGenerationError):
    kind = "safety_blocked"


class GeneratorInvalidResponse(UpstreamGenerationError):
    kind = "invalid_response"
