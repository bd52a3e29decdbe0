"""Custom exceptions for the storefront order service."""

NEUTRAL_CONFIRMATION_MESSAGE = (
    "We could not confirm your order. "
    "Please check your order history or contact support."
)


class StorefrontError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(StorefrontError):
    """Malformed or missing required input. Carries field-level detail."""
    def __init__(self, message, fields=None, payload=None):
        payload = dict(payload or ())
        if fields:
            payload['fields'] = fields
        super().__init__(message, 400, payload)
        self.fields = fields or {}


class InvalidItemsError(StorefrontError):
    """Cart references catalog items that do not resolve (cash on delivery only)."""
    def __init__(self, invalid_items):
        message = (
            'One or more items in your cart are not valid products. '
            'Please clear your cart and add the products again.'
        )
        super().__init__(message, 400, {'invalidItems': invalid_items})
        self.invalid_items = invalid_items


class GatewayError(StorefrontError):
    """The payment processor rejected the request or could not be reached."""
    def __init__(self, message="Checkout session could not be created", payload=None):
        super().__init__(message, 502, payload)


class GatewayTimeoutError(GatewayError):
    """The processor did not answer in time; the payment outcome is unknown."""
    def __init__(self, message="Payment status is not known yet, please retry", payload=None):
        payload = dict(payload or ())
        payload['state'] = 'pending'
        super().__init__(message, payload)
        self.status_code = 504


class NotPaidError(StorefrontError):
    """Checkout session exists but the buyer has not completed payment."""
    def __init__(self, message="Payment not completed", payload=None):
        super().__init__(message, 402, payload)


class ConflictError(StorefrontError):
    """Uniqueness violation on a payment external id. Never returned to callers."""
    def __init__(self, external_id):
        super().__init__(f"Order already exists for payment {external_id}", 409)
        self.external_id = external_id


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class SignatureError(StorefrontError):
    """Webhook payload failed authenticity verification."""
    def __init__(self, message="Invalid webhook signature"):
        super().__init__(message, 400)


class UnauthorizedError(StorefrontError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access", status_code=403):
        super().__init__(message, status_code)
