"""
Exception Classes - Strongly typed exception hierarchy.

Rejected fulfillment attempts are verdicts, not exceptions.
"""


class FulfillmentServiceError(Exception):
    """Base exception for all service errors."""

    pass


class ProductNotFoundError(FulfillmentServiceError):
    """Raised when a product id does not resolve in the catalog."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class UserNotFoundError(FulfillmentServiceError):
    """Raised when a user id does not resolve in the user store."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class InvalidRequestError(FulfillmentServiceError):
    """Raised when a request is missing a required parameter or is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid request: {message}")


class WriteVerificationError(FulfillmentServiceError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class PaymentProviderError(FulfillmentServiceError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class IntegrationError(FulfillmentServiceError):
    """Raised when the payment provider violates its contract (e.g. no checkout URL)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Integration error: {message}")


class WebhookVerificationError(FulfillmentServiceError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")
