from fastapi import status


class BookingEngineError(Exception):
    """Base class for failures surfaced to API callers as {success: false, message}."""

    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingEngineError):
    """Bad input or a violated booking rule. Never retried."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BookingEngineError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingEngineError):
    """Duplicate request or an operation that contradicts current state."""
    status_code = status.HTTP_409_CONFLICT


class TransientError(BookingEngineError):
    """Lock contention or transaction timeout. Safe to retry with backoff."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class GatewayError(BookingEngineError):
    """The payment provider rejected a call or reported an unexpected state."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, gateway_status: str | None = None):
        super().__init__(message)
        self.gateway_status = gateway_status
