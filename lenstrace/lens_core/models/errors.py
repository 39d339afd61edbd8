from __future__ import annotations

GENERIC_FAILURE_MESSAGE = "An error occurred while processing the image"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


class LensError(Exception):
    """Base class for every failure the service reports to a caller."""

    status_code: int = 500
    kind: str = "internal_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or GENERIC_FAILURE_MESSAGE)

    @property
    def public_message(self) -> str:
        return GENERIC_FAILURE_MESSAGE


class ValidationError(LensError):
    status_code = 400
    kind = "validation_error"

    @property
    def public_message(self) -> str:
        return str(self)


class RateLimited(LensError):
    status_code = 429
    kind = "rate_limited"

    def __init__(self, retry_after: float = 0.0):
        super().__init__(RATE_LIMIT_MESSAGE)
        self.retry_after = max(float(retry_after), 0.0)

    @property
    def public_message(self) -> str:
        return RATE_LIMIT_MESSAGE


class ExtractionError(LensError):
    kind = "extraction_failed"


class NavigationTimeout(ExtractionError):
    kind = "navigation_timeout"


class ResultsNotFound(ExtractionError):
    kind = "results_not_found"


class InteractionFailed(ExtractionError):
    kind = "interaction_failed"


class ExtractionEmpty(ExtractionError):
    kind = "extraction_empty"


class SessionLost(LensError):
    kind = "session_lost"


class PoolSaturated(LensError):
    kind = "pool_saturated"


class PoolClosed(LensError):
    kind = "pool_closed"


class InternalError(LensError):
    kind = "internal_error"
