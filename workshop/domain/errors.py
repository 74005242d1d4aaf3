"""Domain and infrastructure error types shared by every layer."""


class WorkshopError(Exception):
    """Base class for all engine errors."""


class NotFoundError(WorkshopError):
    """Raised when a referenced customer, request or technician does not exist."""


class ValidationError(WorkshopError):
    """Raised when a document or input is malformed (missing or mistyped fields)."""


class RateLimitExceeded(WorkshopError):
    """Raised when admission control denied the call and no cached result exists."""


class CircuitOpenError(WorkshopError):
    """Raised when a call is rejected because its circuit breaker is open."""


class StoreError(WorkshopError):
    """Raised by document store adapters."""


class TransientStoreError(StoreError):
    """Timeout, unavailable or conflict. Safe to retry with backoff."""


class PermanentStoreError(StoreError):
    """Permission, invalid argument or schema problems. Never retried."""


class CacheWriteError(WorkshopError):
    """Raised when a cache write or invalidation could not reach the store."""


class AssignmentFailedError(WorkshopError):
    """Raised when assignment writes failed and the request was flagged for manual retry."""

    def __init__(self, request_id: str, message: str, work_order_id: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.work_order_id = work_order_id


class AssignmentInProgressError(WorkshopError):
    """Raised when another caller holds the assignment claim on the same request."""

    def __init__(self, request_id: str):
        super().__init__(f"Assignment of request {request_id} is already in progress")
        self.request_id = request_id
