from typing import Optional


class CheckoutException(Exception):
    """Root of every error raised by the ordering core.

    Callers that only need to know that an ordering operation failed catch this
    class; the subclasses carry the details.
    """
    pass


class ProductNotFound(CheckoutException):
    """Exception raised when a product key does not resolve against the catalog.

    Raised by the catalog repository when a cart line or an order item references
    a product that is not (or no longer) offered.
    """
    pass


class ApiError(CheckoutException):
    """Exception raised when a call to the ordering API fails.

    Attributes:
        status_code: HTTP status returned by the API
        body: Raw response text, kept for diagnostics
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationRequired(CheckoutException):
    """Exception raised when an endpoint requires a bearer token and none is available.

    Raised before any network I/O takes place.
    """
    pass


class OrderSubmissionFailed(CheckoutException):
    """Exception raised when the order creation call fails on the critical path."""
    pass


class InvalidTransition(CheckoutException):
    """Exception raised when a lifecycle transition is not allowed.

    Covers share coupons moving backwards (e.g. REDEEMED -> ISSUED) and order
    actions that are not available from the order's current status.
    """
    pass


class StorageError(CheckoutException):
    """Exception raised when the local key-value store cannot be read or written."""
    pass
