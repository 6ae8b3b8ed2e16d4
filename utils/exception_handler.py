"""
Error taxonomy for the swap payment service.

Every failure a caller can observe derives from PaymentError so that HTTP
handlers and the webhook boundary can translate errors by type.
"""

from typing import Any, Optional


class PaymentError(Exception):
    """Base class for payment service errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(PaymentError):
    """Malformed input, e.g. a webhook without a swap id"""
    pass


class NotFoundError(PaymentError):
    """No order matches the supplied reference"""
    pass


class SwapNotCreatedError(PaymentError):
    """The order exists but has no provider swap to poll yet"""
    pass


class ProviderError(PaymentError):
    """
    The provider returned an error response or could not be reached.

    status_code is the HTTP status (0 when no response was received), code is the
    provider's error code when one was supplied, body is the raw response body.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        code: Optional[str] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.body = body

    def __str__(self) -> str:
        return f"{self.message} (status={self.status_code}, code={self.code})"


class ProviderTimeoutError(ProviderError):
    """A provider call exceeded its time bound"""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(message, status_code=0, code="timeout")
        self.timeout_seconds = timeout_seconds


class StorageError(PaymentError):
    """Persistence failure in the order or audit store"""
    pass


class OptimisticLockingError(PaymentError):
    """Conditional per-order write lost against a concurrent writer"""

    def __init__(self, order_id: str, expected_version: int):
        super().__init__(
            f"Version conflict for order {order_id}: expected version {expected_version} "
            f"but the order was modified by another writer"
        )
        self.order_id = order_id
        self.expected_version = expected_version
